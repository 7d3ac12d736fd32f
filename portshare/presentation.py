"""Text, option lists and peer selection rules for the direct-connection view."""

from __future__ import annotations

import secrets
import threading
from datetime import timedelta
from typing import Callable, Optional, Sequence, Union

from .direct_controller import DirectState, PeerLatency
from .models import (
    ADDRESS_FAMILY_IPV4,
    ADDRESS_FAMILY_IPV6,
    ControlKind,
    EgressCandidate,
    ProxyNode,
    TrustedPeer,
)
from .peer_address import normalize_peer_control_address, split_host_port

PEER_LATENCY_REFRESH_INTERVAL = timedelta(milliseconds=500)
PEER_LATENCY_PROBE_TIMEOUT = timedelta(milliseconds=150)

PAIRING_SECRET_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_PAIRED_PREFIX = "已配对并授权全端口访问："

Duration = Union[timedelta, float, int]


def _seconds(value: Duration) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _milliseconds(value: timedelta) -> int:
    return value // timedelta(milliseconds=1)


class PeerLatencyRefresher:
    """Calls a refresh function periodically on a background thread.

    The refresh function receives the per-tick timeout in seconds.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._stop_event is not None

    def start(
        self, interval: Duration, timeout: Duration, refresh: Optional[Callable[[float], None]]
    ) -> None:
        """Begin refreshing; does nothing if already started."""
        if refresh is None:
            return
        with self._lock:
            if self._stop_event is not None:
                return
            stop_event = threading.Event()
            self._stop_event = stop_event
            interval_s = _seconds(interval)
            if interval_s <= 0:
                self._thread = None
                return
            timeout_s = _seconds(timeout)
            if timeout_s <= 0 or timeout_s > interval_s:
                timeout_s = interval_s
            thread = threading.Thread(
                target=self._loop,
                args=(stop_event, interval_s, timeout_s, refresh),
                name="peer-latency-refresh",
                daemon=True,
            )
            self._thread = thread
        thread.start()

    def stop(self) -> None:
        """Stop refreshing; a later start begins again."""
        with self._lock:
            stop_event, thread = self._stop_event, self._thread
            self._stop_event = None
            self._thread = None
        if stop_event is None:
            return
        stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    @staticmethod
    def _loop(
        stop_event: threading.Event,
        interval: float,
        timeout: float,
        refresh: Callable[[float], None],
    ) -> None:
        while not stop_event.wait(interval):
            refresh(timeout)


def value_or_dash(value: str) -> str:
    return value or "-"


def compact_status_summary_text(state: DirectState) -> str:
    """The one-line summary for the top of the window."""
    parts = ["Tailscale：ready" if state.ready else "Tailscale：未就绪"]
    parts.append("IP " + value_or_dash(state.local_tailscale_ip))
    parts.append("监听中" if state.control_listening else "未监听")
    result = state.clash_apply_result
    if result.node_name:
        egress = "出口 " + result.node_name
        if result.route_type:
            egress += " " + result.route_type
        if result.latency:
            egress += " " + result.latency
        parts.append(egress)
    return " · ".join(parts)


def generate_pairing_secret() -> str:
    """A random 20-letter secret grouped in fours with hyphens."""
    letters = [
        PAIRING_SECRET_ALPHABET[value % len(PAIRING_SECRET_ALPHABET)]
        for value in secrets.token_bytes(20)
    ]
    return "-".join("".join(letters[start : start + 4]) for start in range(0, 20, 4))


def peer_display_name(peer: TrustedPeer) -> str:
    return peer.display_name or peer.id


def peer_display_name_by_id(peers: Sequence[TrustedPeer], peer_id: str) -> str:
    for peer in peers:
        if peer.id == peer_id:
            return peer_display_name(peer)
    return peer_id


def peer_latency_text(latency: PeerLatency) -> str:
    if latency.latency > timedelta(0):
        return f"{_milliseconds(latency.latency)}ms"
    return "延迟 -"


def peer_display_meta(peer: TrustedPeer, latency: PeerLatency) -> str:
    parts = [value_or_dash(peer.tailscale_ip)]
    if peer.access_authorized_at is not None:
        parts.append("已授权全端口")
    if peer.last_route:
        parts.append(peer.last_route)
    if latency.updated:
        parts.append(peer_latency_text(latency))
    return " · ".join(parts)


def _has_peer(peers: Sequence[TrustedPeer], peer_id: str) -> bool:
    return any(peer.id == peer_id for peer in peers)


def reconcile_selected_peer(
    peers: Sequence[TrustedPeer], selected_peer_id: str, explicit: bool
) -> tuple[str, bool]:
    """Keep a usable peer selected without turning it into an explicit choice."""
    if selected_peer_id and not _has_peer(peers, selected_peer_id):
        selected_peer_id = ""
        explicit = False
    if not selected_peer_id and peers:
        selected_peer_id = peers[0].id
    return selected_peer_id, explicit


def can_remove_selected_peer(
    peers: Sequence[TrustedPeer], selected_peer_id: str, explicit: bool
) -> bool:
    return explicit and bool(selected_peer_id) and _has_peer(peers, selected_peer_id)


def pair_success_dialog_message(state: DirectState) -> str:
    if state.message.startswith(_PAIRED_PREFIX):
        return state.message
    return "配对成功，已授权对方 Tailscale IP 访问本机全端口。"


def _sorted_ports(ports: Sequence[int]) -> str:
    return ", ".join(str(port) for port in sorted(ports))


def localhost_bridge_status_text(state: DirectState) -> str:
    if not state.localhost_bridge_ports:
        return "localhost 桥接：无"
    return "localhost 桥接：" + _sorted_ports(state.localhost_bridge_ports)


def localhost_bridge_conflict_status_text(state: DirectState) -> str:
    if not state.localhost_bridge_conflict_ports:
        return "localhost 冲突：无"
    return (
        "localhost 冲突："
        + _sorted_ports(state.localhost_bridge_conflict_ports)
        + " 原生监听，未桥接"
    )


def network_route_detail_text(state: DirectState) -> str:
    report = state.network_path
    route_info = report.current_route
    if not report.endpoint and not route_info.interface_alias:
        return "当前出口：-"
    parts = []
    if report.endpoint:
        parts.append("endpoint " + report.endpoint)
    if route_info.interface_alias:
        route = route_info.interface_alias
        if route_info.next_hop:
            route += " -> " + route_info.next_hop
        parts.append(route)
    return "当前出口：" + " · ".join(parts)


def address_family_label(ip: str) -> str:
    return ADDRESS_FAMILY_IPV6 if ":" in ip else ADDRESS_FAMILY_IPV4


def host_route_prefix(ip: str, family: str) -> str:
    if family == ADDRESS_FAMILY_IPV6 or ":" in ip:
        return ip + "/128"
    return ip + "/32"


def active_bypass_status_text(state: DirectState) -> str:
    if not state.has_active_bypass:
        return "临时路由：未启用"
    bypass = state.active_bypass
    family = bypass.address_family or address_family_label(bypass.endpoint_ip)
    return (
        f"临时路由：{family} {host_route_prefix(bypass.endpoint_ip, family)}"
        f" -> {bypass.next_hop}"
    )


def _egress_candidate_label(candidate: EgressCandidate) -> str:
    label = candidate.interface_alias
    if candidate.address_family:
        label += " " + candidate.address_family
    label += " -> " + candidate.next_hop
    details = []
    if candidate.public_ipv4:
        details.append("公网 " + candidate.public_ipv4)
    if candidate.public_ipv6:
        details.append("公网IPv6 " + candidate.public_ipv6)
    if candidate.interface_ip:
        details.append("本机 " + candidate.interface_ip)
    if candidate.netcheck_error:
        details.append("公网检测失败")
    if details:
        label += " (" + " / ".join(details) + ")"
    if candidate.recommended:
        label += " 推荐"
    if candidate.suspected_proxy:
        label += " 疑似代理"
    return label


def egress_candidate_options(candidates: Sequence[EgressCandidate]) -> list[str]:
    return [_egress_candidate_label(candidate) for candidate in candidates]


def recommended_candidate_index(candidates: Sequence[EgressCandidate]) -> int:
    for position, candidate in enumerate(candidates):
        if candidate.recommended:
            return position
    return 0 if candidates else -1


def selected_peer_tailscale_ip(
    peers: Sequence[TrustedPeer], selected_peer_id: str, fallback: str
) -> str:
    """The selected peer's IP, or the host typed in as a fallback."""
    for peer in peers:
        if peer.id == selected_peer_id:
            return peer.tailscale_ip.strip()
    try:
        address = normalize_peer_control_address(fallback)
        host, _ = split_host_port(address)
    except ValueError:
        return fallback.strip()
    return host.strip("[]")


def clash_tun_status_text(state: DirectState) -> str:
    interfaces = state.clash_report.tun_interfaces
    if not interfaces:
        return "TUN：未检测"
    names = [
        f"{item.name} 已启用" if item.status.lower() == "up" else f"{item.name} {item.status}"
        for item in interfaces
    ]
    return "TUN：" + " / ".join(names)


def clash_proxy_ports_text(state: DirectState) -> str:
    ports = state.clash_report.proxy_ports
    if not ports:
        return "代理入口：未检测"
    return "代理入口：" + " / ".join(f"{port.kind} {port.port}" for port in ports)


def clash_control_text(state: DirectState) -> str:
    control = state.clash_report.control
    if control.kind == ControlKind.NAMED_PIPE:
        return "控制接口：named pipe " + control.address
    if control.kind == ControlKind.HTTP:
        return "控制接口：" + control.address
    return "控制接口：未检测"


def clash_apply_result_text(state: DirectState) -> str:
    result = state.clash_apply_result
    if not result.node_name:
        return "出口优化：未应用"
    parts = [result.node_name]
    if result.route_type:
        parts.append(result.route_type)
    if result.latency:
        parts.append(result.latency)
    return "出口优化：" + " · ".join(parts)


def _clash_node_label(node: ProxyNode) -> str:
    parts = [node.region, node.name]
    if node.delay > timedelta(0):
        parts.append(f"{_milliseconds(node.delay)}ms")
    if node.tailscale_latency:
        parts.append("Tailscale " + node.tailscale_latency)
    if node.current:
        parts.append("当前")
    return " · ".join(parts)


def clash_node_options(nodes: Sequence[ProxyNode]) -> list[str]:
    return [_clash_node_label(node) for node in nodes]


def current_clash_node_index(nodes: Sequence[ProxyNode]) -> int:
    for position, node in enumerate(nodes):
        if node.current:
            return position
    return 0 if nodes else -1