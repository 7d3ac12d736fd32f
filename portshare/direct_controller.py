"""Controller for direct, peer-to-peer access over Tailscale."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Optional, Protocol

from .models import (
    ActiveBypass,
    ApplyRequest,
    ApplyResult,
    BypassRequest,
    DiscoveryReport,
    LinkOptions,
    LinkResult,
    PairedPeer,
    PathStatus,
    PeerPathReport,
    ProxyNode,
    ReadyState,
    TrustedPeer,
)
from .peer_address import (
    PeerAddressInvalidError,
    PeerAddressRequiredError,
    describe_pair_error,
    display_peer_name,
    normalize_peer_control_address,
)

_ZERO = timedelta(0)


class DirectManagerRequiredError(RuntimeError):
    """Raised when no direct manager was configured."""

    def __init__(self, message: str = "direct manager is not configured") -> None:
        super().__init__(message)


class DirectSecretRequiredError(ValueError):
    """Raised when the shared secret is blank."""

    def __init__(self, message: str = "shared secret is required") -> None:
        super().__init__(message)


class DirectListenAddressRequiredError(ValueError):
    """Raised when the listen address is blank."""

    def __init__(self, message: str = "listen address is required") -> None:
        super().__init__(message)


class DirectManager(Protocol):
    """Runs the direct-connection machinery the controller drives."""

    def ready(self) -> ReadyState: ...

    def start_control_server(self, listen_address: str, secret: str) -> None: ...

    def stop_control_server(self) -> None: ...

    def control_address(self) -> str: ...

    def localhost_bridge_enabled(self) -> bool: ...

    def set_localhost_bridge_enabled(self, enabled: bool) -> None: ...

    def localhost_bridge_ports(self) -> list[int]: ...

    def localhost_bridge_conflict_ports(self) -> list[int]: ...

    def network_path(self, peer_ip: str) -> PeerPathReport: ...

    def apply_network_bypass(self, request: BypassRequest) -> ActiveBypass: ...

    def clear_network_bypass(self) -> None: ...

    def active_network_bypass(self) -> Optional[ActiveBypass]: ...

    def optimize_link(self, peer_ip: str, options: LinkOptions) -> LinkResult: ...

    def probe_peer_latency(self, peer_ip: str) -> timedelta: ...

    def detect_clash(self) -> DiscoveryReport: ...

    def refresh_clash_nodes(self) -> DiscoveryReport: ...

    def apply_clash_node(self, request: ApplyRequest) -> ApplyResult: ...

    def restore_clash_node(self) -> None: ...

    def pair_peer(self, address: str) -> PairedPeer: ...

    def trusted_peers(self) -> list[TrustedPeer]: ...

    def remove_trusted_peer(self, peer_id: str) -> None: ...


@dataclass(frozen=True)
class PeerLatency:
    """The latest latency sample for a peer."""

    latency: timedelta = _ZERO
    error: str = ""
    updated: bool = False


@dataclass
class DirectState:
    """Everything the direct-connection view shows."""

    ready: bool = False
    local_tailscale_ip: str = ""
    control_listening: bool = False
    control_address: str = ""
    localhost_bridge_enabled: bool = False
    localhost_bridge_ports: list[int] = field(default_factory=list)
    localhost_bridge_conflict_ports: list[int] = field(default_factory=list)
    network_path: PeerPathReport = field(default_factory=PeerPathReport)
    active_bypass: ActiveBypass = field(default_factory=ActiveBypass)
    has_active_bypass: bool = False
    link_guardian: LinkResult = field(default_factory=LinkResult)
    clash_report: DiscoveryReport = field(default_factory=DiscoveryReport)
    clash_apply_result: ApplyResult = field(default_factory=ApplyResult)
    diagnostic_code: str = ""
    message: str = ""
    peers: list[TrustedPeer] = field(default_factory=list)
    peer_latencies: dict[str, PeerLatency] = field(default_factory=dict)


def _snapshot(state: DirectState) -> DirectState:
    return replace(
        state,
        peers=list(state.peers),
        localhost_bridge_ports=list(state.localhost_bridge_ports),
        localhost_bridge_conflict_ports=list(state.localhost_bridge_conflict_ports),
        peer_latencies=dict(state.peer_latencies),
    )


def _has_path(report: PeerPathReport) -> bool:
    return bool(
        report.peer_tailscale_ip or report.endpoint_ip or report.status != PathStatus.UNKNOWN
    )


def _current_node_in_group(nodes: tuple[ProxyNode, ...], group_name: str) -> str:
    return next(
        (node.name for node in nodes if node.group_name == group_name and node.current), ""
    )


class DirectController:
    """Drives a DirectManager and keeps a presentable state."""

    def __init__(self, manager: Optional[DirectManager] = None) -> None:
        self._manager = manager
        self._state = DirectState()

    def start_direct_mode(self, secret: str, listen_address: str) -> None:
        manager = self._require_manager()
        secret = secret.strip()
        if not secret:
            self._state.message = "请输入共享密钥"
            raise DirectSecretRequiredError()
        listen_address = listen_address.strip()
        if not listen_address:
            self._state.message = "缺少直连监听地址"
            raise DirectListenAddressRequiredError()
        try:
            manager.start_control_server(listen_address, secret)
        except Exception as exc:
            self._state.message = f"启动直连监听失败：{exc}"
            raise
        self._update_control_state()
        self._sync_localhost_bridge_state()
        if not self._state.control_address:
            self._state.control_address = listen_address
            self._state.control_listening = True
        success_message = control_listening_message(self._state.control_address)
        self._state.message = success_message
        try:
            self.refresh()
        except Exception as exc:
            self._state.message = f"{success_message}，但状态刷新失败：{exc}"
            return
        self._state.message = control_listening_message(self._state.control_address)

    def stop_direct_mode(self) -> None:
        manager = self._require_manager()
        try:
            manager.stop_control_server()
        except Exception as exc:
            self._state.message = f"停止直连监听失败：{exc}"
            raise
        self._update_control_state()
        self._sync_localhost_bridge_state()
        self._state.message = "直连监听已停止"

    def refresh(self) -> None:
        manager = self._require_manager()
        ready = manager.ready()
        self._state.ready = ready.ready
        self._state.local_tailscale_ip = ready.local_tailscale_ip
        self._state.diagnostic_code = ready.code
        self._update_control_state()
        self._sync_localhost_bridge_state()
        self._load_active_bypass()
        try:
            peers = manager.trusted_peers()
        except Exception as exc:
            self._state.message = f"读取可信设备失败：{exc}"
            raise
        self._state.peers = list(peers)
        if ready.ready:
            if self._state.control_listening:
                self._state.message = control_listening_message(self._state.control_address)
            else:
                self._state.message = "Tailscale 已就绪"
        else:
            self._state.message = ready.message

    def detect_network_path(self, peer_ip: str) -> None:
        """Diagnose the path to a peer.

        A manager error may carry a partial PeerPathReport as its ``report``.
        """
        manager = self._require_manager()
        peer_ip = peer_ip.strip()
        if not peer_ip:
            err = ValueError("请选择一个可信设备")
            self._state.message = str(err)
            raise err
        try:
            report = manager.network_path(peer_ip)
        except Exception as exc:
            partial = getattr(exc, "report", None)
            self._state.network_path = (
                partial if isinstance(partial, PeerPathReport) else PeerPathReport()
            )
            self._state.message = f"网络路径检测失败：{exc}"
            raise
        self._state.network_path = report
        self._state.message = network_path_status_text(self._state)

    def apply_network_bypass(self, candidate_index: int) -> None:
        manager = self._require_manager()
        report = self._state.network_path
        if not report.endpoint_ip:
            err = ValueError("请先检测网络路径，确认 Tailscale 直连 endpoint")
            self._state.message = str(err)
            raise err
        if not 0 <= candidate_index < len(report.candidates):
            err = ValueError("请选择一个公网出口")
            self._state.message = str(err)
            raise err
        request = BypassRequest(
            peer_tailscale_ip=report.peer_tailscale_ip,
            endpoint_ip=report.endpoint_ip,
            candidate=report.candidates[candidate_index],
        )
        try:
            active = manager.apply_network_bypass(request)
        except Exception as exc:
            self._state.message = f"临时绕过代理失败：{exc}"
            raise
        self._state.active_bypass = active
        self._state.has_active_bypass = True
        self._state.message = "已临时绕过代理：" + active.endpoint_ip

    def clear_network_bypass(self) -> None:
        manager = self._require_manager()
        try:
            manager.clear_network_bypass()
        except Exception as exc:
            self._state.message = f"撤销绕过失败：{exc}"
            raise
        self._state.active_bypass = ActiveBypass()
        self._state.has_active_bypass = False
        self._state.message = "已撤销临时绕过"

    def refresh_peer_latencies(self) -> None:
        manager = self._require_manager()
        for peer in self._state.peers:
            key = peer_latency_key(peer)
            peer_ip = peer.tailscale_ip.strip()
            if not key or not peer_ip:
                continue
            try:
                latency = manager.probe_peer_latency(peer_ip)
            except Exception as exc:
                self._state.peer_latencies[key] = PeerLatency(error=str(exc), updated=True)
                continue
            self._state.peer_latencies[key] = PeerLatency(latency=latency, updated=True)

    def optimize_link(self, peer_ip: str, auto_bypass: bool) -> None:
        """Ask the manager to optimise the link to a peer.

        A manager error may carry a partial LinkResult as its ``result``.
        """
        manager = self._require_manager()
        peer_ip = peer_ip.strip()
        if not peer_ip:
            err = ValueError("请选择可信设备或输入对方 Tailscale IP")
            self._state.message = str(err)
            raise err
        options = LinkOptions(
            auto_bypass=auto_bypass, latest_latency=self._latest_peer_latency(peer_ip)
        )
        failure: Optional[Exception] = None
        try:
            result = manager.optimize_link(peer_ip, options)
        except Exception as exc:
            failure = exc
            partial = getattr(exc, "result", None)
            result = partial if isinstance(partial, LinkResult) else LinkResult()
        self._state.link_guardian = result
        if _has_path(result.after):
            self._state.network_path = result.after
        elif _has_path(result.before):
            self._state.network_path = result.before
        if result.has_active_bypass:
            self._state.active_bypass = result.active_bypass
            self._state.has_active_bypass = True
        else:
            self._load_active_bypass()
        if result.message:
            self._state.message = result.message
        if failure is not None:
            if not self._state.message:
                self._state.message = f"链路优化失败：{failure}"
            raise failure
        if not self._state.message:
            self._state.message = link_guardian_status_text(self._state)

    def detect_clash(self) -> None:
        manager = self._require_manager()
        try:
            report = manager.detect_clash()
        except Exception as exc:
            self._state.message = f"检测代理/TUN 失败：{exc}"
            raise
        self._state.clash_report = report
        self._state.message = "已检测代理/TUN"

    def refresh_clash_nodes(self) -> None:
        manager = self._require_manager()
        try:
            report = manager.refresh_clash_nodes()
        except Exception as exc:
            self._state.message = f"刷新节点延迟失败：{exc}"
            raise
        self._state.clash_report = report
        self._state.message = "已刷新节点延迟"

    def apply_clash_node(self, peer_ip: str, node_index: int) -> None:
        manager = self._require_manager()
        peer_ip = peer_ip.strip()
        if not peer_ip:
            err = ValueError("请选择可信设备或输入对方 Tailscale IP")
            self._state.message = str(err)
            raise err
        nodes = self._state.clash_report.nodes
        if not 0 <= node_index < len(nodes):
            err = ValueError("请选择一个代理出口节点")
            self._state.message = str(err)
            raise err
        node = nodes[node_index]
        request = ApplyRequest(
            peer_tailscale_ip=peer_ip,
            group_name=node.group_name,
            node_name=node.name,
            previous_node=_current_node_in_group(nodes, node.group_name),
        )
        try:
            result = manager.apply_clash_node(request)
        except Exception as exc:
            self._state.clash_apply_result = ApplyResult()
            self._state.message = f"应用出口节点失败：{exc}"
            raise
        self._state.clash_apply_result = result
        self._state.message = f"已应用出口节点：{node.name} · {result.latency}"

    def restore_clash_node(self) -> None:
        manager = self._require_manager()
        try:
            manager.restore_clash_node()
        except Exception as exc:
            self._state.message = f"恢复原节点失败：{exc}"
            raise
        self._state.message = "已恢复原节点"

    def pair_peer(self, peer_address: str) -> None:
        self._require_manager()
        address = self._normalize_peer(peer_address)
        self._pair_normalized_peer(address)

    def pair_peer_with_secret(self, peer_address: str, secret: str, listen_address: str) -> None:
        self._require_manager()
        address = self._normalize_peer(peer_address)
        self.start_direct_mode(secret, listen_address)
        self._pair_normalized_peer(address)

    def remove_trusted_peer(self, peer_id: str) -> None:
        manager = self._require_manager()
        try:
            manager.remove_trusted_peer(peer_id)
        except Exception as exc:
            self._state.message = f"删除可信设备失败：{exc}"
            raise
        success_message = "已删除可信设备并撤销防火墙授权"
        self._state.message = success_message
        try:
            self.refresh()
        except Exception as exc:
            self._state.message = f"{success_message}，但状态刷新失败：{exc}"
            return
        self._state.message = success_message

    def set_localhost_bridge_enabled(self, enabled: bool) -> None:
        manager = self._require_manager()
        try:
            manager.set_localhost_bridge_enabled(enabled)
        except Exception as exc:
            self._state.message = f"切换 localhost 桥接失败：{exc}"
            raise
        self._state.localhost_bridge_enabled = enabled
        if enabled:
            self._state.message = "已启用 localhost 桥接"
        else:
            self._state.message = "已暂停 localhost 桥接"
            self._state.localhost_bridge_ports = []
            self._state.localhost_bridge_conflict_ports = []

    def state(self) -> DirectState:
        """A copy of the current state that callers may change freely."""
        return _snapshot(self._state)

    def _normalize_peer(self, peer_address: str) -> str:
        try:
            return normalize_peer_control_address(peer_address)
        except (PeerAddressRequiredError, PeerAddressInvalidError) as exc:
            self._state.message = f"对方 Tailscale 地址无效：{exc}"
            raise

    def _pair_normalized_peer(self, address: str) -> None:
        manager = self._require_manager()
        try:
            peer = manager.pair_peer(address)
        except Exception as exc:
            explained = describe_pair_error(address, exc)
            self._state.message = f"配对失败：{explained}"
            if explained is exc:
                raise
            raise explained from exc
        success_message = "已配对并授权全端口访问：" + display_peer_name(
            peer.device_name, peer.device_id
        )
        self._state.message = success_message
        try:
            self.refresh()
        except Exception as exc:
            self._state.message = f"{success_message}；状态刷新失败：{exc}"
            return
        self._state.message = success_message

    def _latest_peer_latency(self, peer_ip: str) -> timedelta:
        peer_ip = peer_ip.strip()
        latencies = self._state.peer_latencies
        if not peer_ip or not latencies:
            return _ZERO
        for peer in self._state.peers:
            if peer.tailscale_ip.strip() != peer_ip:
                continue
            sample = latencies.get(peer_latency_key(peer), PeerLatency())
            if sample.updated and sample.latency > _ZERO:
                return sample.latency
        sample = latencies.get(peer_ip, PeerLatency())
        if sample.updated and sample.latency > _ZERO:
            return sample.latency
        return _ZERO

    def _require_manager(self) -> DirectManager:
        if self._manager is None:
            self._state.message = "直连管理器未配置"
            raise DirectManagerRequiredError()
        return self._manager

    def _load_active_bypass(self) -> None:
        active = self._require_manager().active_network_bypass()
        self._state.active_bypass = active if active is not None else ActiveBypass()
        self._state.has_active_bypass = active is not None

    def _update_control_state(self) -> None:
        address = self._require_manager().control_address().strip()
        self._state.control_address = address
        self._state.control_listening = bool(address)

    def _sync_localhost_bridge_state(self) -> None:
        manager = self._require_manager()
        self._state.localhost_bridge_enabled = manager.localhost_bridge_enabled()
        if self._state.localhost_bridge_enabled:
            self._state.localhost_bridge_ports = list(manager.localhost_bridge_ports())
            self._state.localhost_bridge_conflict_ports = list(
                manager.localhost_bridge_conflict_ports()
            )
        else:
            self._state.localhost_bridge_ports = []
            self._state.localhost_bridge_conflict_ports = []


def control_listening_message(address: str) -> str:
    address = address.strip()
    if not address:
        return "直连监听已启动"
    return "直连监听已启动：" + address


def peer_latency_key(peer: TrustedPeer) -> str:
    """The key a peer's latency samples are stored under."""
    if peer.id.strip():
        return peer.id
    return peer.tailscale_ip.strip()


_PATH_PREFIXES = {
    PathStatus.DIRECT_NORMAL: "网络路径：直连正常",
    PathStatus.DIRECT_TUN_OPTIMIZED: "网络路径：TUN 接管但低延迟直连",
    PathStatus.DIRECT_PROXY: "网络路径：直连但疑似代理绕路",
    PathStatus.DERP: "网络路径：DERP 中继",
    PathStatus.FAILED: "网络路径：检测失败",
}


def _network_path_summary(prefix: str, report: PeerPathReport) -> str:
    parts = [prefix]
    if report.endpoint:
        parts.append(report.endpoint)
    if report.latency:
        parts.append(report.latency)
    if report.current_route.interface_alias:
        route = report.current_route.interface_alias
        if report.current_route.next_hop:
            route += " -> " + report.current_route.next_hop
        parts.append(route)
    return " · ".join(parts)


def network_path_status_text(state: DirectState) -> str:
    report = state.network_path
    prefix = _PATH_PREFIXES.get(report.status)
    if prefix is None:
        return "网络路径：未检测"
    return _network_path_summary(prefix, report)


def link_guardian_status_text(state: DirectState) -> str:
    result = state.link_guardian
    if result.message:
        return "链路守护：" + result.message
    if result.decision.message:
        return "链路守护：" + result.decision.message
    return "链路守护：待优化"