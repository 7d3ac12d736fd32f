"""Parsing peer control addresses and explaining pairing failures."""

from __future__ import annotations

import re

DEFAULT_DIRECT_CONTROL_PORT = "17890"

_PORT_PATTERN = re.compile(r"[+-]?[0-9]+")
_FORBIDDEN_HOST_CHARS = frozenset(" \t\r\n/")


class PeerAddressRequiredError(ValueError):
    """Raised when no peer address was given."""

    def __init__(self, message: str = "peer tailscale address is required") -> None:
        super().__init__(message)


class PeerAddressInvalidError(ValueError):
    """Raised when a peer address cannot be used."""

    def __init__(self, message: str = "peer tailscale address is invalid") -> None:
        super().__init__(message)


class PairingError(RuntimeError):
    """A pairing failure explained in terms the user can act on."""


def split_host_port(address: str) -> tuple[str, str]:
    """Split "host:port" or "[host]:port" into host and port.

    Raises ValueError when the address has no port or misplaced brackets.
    """
    colon = address.rfind(":")
    if colon < 0:
        raise ValueError(f"address {address}: missing port in address")
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"address {address}: missing ']' in address")
        if end + 1 == len(address):
            raise ValueError(f"address {address}: missing port in address")
        if end + 1 != colon:
            if address[end + 1] == ":":
                raise ValueError(f"address {address}: too many colons in address")
            raise ValueError(f"address {address}: missing port in address")
        host = address[1:end]
        open_from, close_from = 1, end + 1
    else:
        host = address[:colon]
        if ":" in host:
            raise ValueError(f"address {address}: too many colons in address")
        open_from, close_from = 0, 0
    if "[" in address[open_from:]:
        raise ValueError(f"address {address}: unexpected '[' in address")
    if "]" in address[close_from:]:
        raise ValueError(f"address {address}: unexpected ']' in address")
    return host, address[colon + 1 :]


def join_host_port(host: str, port: str | int) -> str:
    """Combine host and port, bracketing IPv6 hosts."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _validate_peer_host(host: str) -> None:
    host = host.strip()
    if not host or any(char in _FORBIDDEN_HOST_CHARS for char in host):
        raise PeerAddressInvalidError()


def _validate_tcp_port(port: str) -> None:
    if not _PORT_PATTERN.fullmatch(port):
        raise PeerAddressInvalidError()
    if not 0 < int(port) <= 65535:
        raise PeerAddressInvalidError()


def normalize_peer_control_address(address: str) -> str:
    """Turn a user-entered peer address into "host:port".

    The default control port is added when none is given.
    """
    address = address.strip()
    if not address:
        raise PeerAddressRequiredError()
    try:
        host, port = split_host_port(address)
    except ValueError:
        pass
    else:
        _validate_peer_host(host)
        _validate_tcp_port(port)
        return join_host_port(host, port)

    if address.startswith("[") or "]:" in address:
        raise PeerAddressInvalidError()
    if address.count(":") == 1:
        host, _, port = address.partition(":")
        if not host or not port:
            raise PeerAddressInvalidError()
        _validate_peer_host(host)
        _validate_tcp_port(port)
        return join_host_port(host, port)
    _validate_peer_host(address)
    return join_host_port(address, DEFAULT_DIRECT_CONTROL_PORT)


def describe_pair_error(address: str, error: BaseException | None) -> BaseException | None:
    """Return an error that explains a pairing failure, or the error itself."""
    if error is None:
        return None
    raw = str(error)
    message = raw.lower()
    if "no such host" in message or "dns" in message:
        return PairingError(
            f"无法解析对方地址 {address}。请确认 MagicDNS 已启用，或直接输入对方 Tailscale IP。"
            "可在 PowerShell 检查：Resolve-DnsName <peer>.ts.net -Server 100.100.100.100；"
            "如果默认 DNS 不生效，请执行 tailscale set --accept-dns=true。"
            f"原始错误：{raw}"
        )
    if "actively refused" in message or "connection refused" in message:
        return PairingError(
            f"对方 {address} 没有接受 portshare 直连连接。请确认对方电脑也运行新版 portshare，"
            "输入同一个直连密钥，并点击“启用直连密钥”；如果已经启用，"
            "请检查 Tailscale Shields Up 或 Windows 防火墙是否拦截 17890。"
            f"原始错误：{raw}"
        )
    if "i/o timeout" in message or "timed out" in message or "timeout" in message:
        return PairingError(
            f"连接对方 {address} 超时。请确认两端 Tailscale 可互通，Tailscale Shields Up 未阻止入站，"
            "Windows 防火墙允许 portshare 控制端口 17890，"
            "并用 Test-NetConnection <peer-ip> -Port 17890 验证。"
            f"原始错误：{raw}"
        )
    if "authentication failed" in message or "auth failed" in message or "hmac" in message:
        return PairingError(
            "共享密钥不一致，配对认证失败。请在两台电脑上重新输入完全相同的直连密钥，"
            "并重新启用直连密钥后再配对。"
            f"原始错误：{raw}"
        )
    return error


def display_peer_name(name: str, peer_id: str) -> str:
    """The peer's name, or its id when the name is blank."""
    return name if name.strip() else peer_id