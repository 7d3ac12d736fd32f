"""Value types shared by the share and direct-connection controllers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

ADDRESS_FAMILY_IPV4 = "IPv4"
ADDRESS_FAMILY_IPV6 = "IPv6"


class ShareMode(str, Enum):
    """Where a local service is published."""

    TAILNET = "tailnet"
    PUBLIC = "public"


class ShareStatus(str, Enum):
    """Lifecycle state of a published share."""

    ACTIVE = "active"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class LocalService:
    """An HTTP/HTTPS service discovered on this machine."""

    id: str = ""
    name: str = ""
    title: str = ""
    scheme: str = "http"
    host: str = ""
    port: int = 0


@dataclass(frozen=True)
class Share:
    """A published address for a local service."""

    id: str = ""
    service_id: str = ""
    mode: ShareMode = ShareMode.TAILNET
    public_url: str = ""
    status: ShareStatus = ShareStatus.ACTIVE


@dataclass(frozen=True)
class TrustedPeer:
    """A paired device allowed to reach this machine directly."""

    id: str = ""
    display_name: str = ""
    tailscale_ip: str = ""
    access_authorized_at: Optional[datetime] = None
    last_route: str = ""


@dataclass(frozen=True)
class PairedPeer:
    """The outcome of a successful pairing."""

    device_id: str = ""
    device_name: str = ""
    address: str = ""


@dataclass(frozen=True)
class ReadyState:
    """Whether the local Tailscale node is usable."""

    ready: bool = False
    local_tailscale_ip: str = ""
    code: str = ""
    message: str = ""


class PathStatus(str, Enum):
    """Classification of the network path to a peer."""

    UNKNOWN = ""
    DIRECT_NORMAL = "direct_normal"
    DIRECT_TUN_OPTIMIZED = "direct_tun_optimized"
    DIRECT_PROXY = "direct_proxy"
    DERP = "derp"
    FAILED = "failed"


@dataclass(frozen=True)
class RouteInfo:
    """The route currently used towards an endpoint."""

    interface_alias: str = ""
    next_hop: str = ""


@dataclass(frozen=True)
class EgressCandidate:
    """A network interface that could carry traffic to a peer endpoint."""

    interface_alias: str = ""
    interface_index: int = 0
    interface_ip: str = ""
    address_family: str = ""
    next_hop: str = ""
    public_ipv4: str = ""
    public_ipv6: str = ""
    netcheck_error: str = ""
    recommended: bool = False
    suspected_proxy: bool = False


@dataclass(frozen=True)
class PeerPathReport:
    """Diagnosis of the path to one peer."""

    peer_tailscale_ip: str = ""
    status: PathStatus = PathStatus.UNKNOWN
    endpoint: str = ""
    endpoint_ip: str = ""
    latency: str = ""
    current_route: RouteInfo = field(default_factory=RouteInfo)
    candidates: tuple[EgressCandidate, ...] = ()


@dataclass(frozen=True)
class BypassRequest:
    """A request to route a peer endpoint around the proxy."""

    peer_tailscale_ip: str = ""
    endpoint_ip: str = ""
    candidate: EgressCandidate = field(default_factory=EgressCandidate)


@dataclass(frozen=True)
class ActiveBypass:
    """A host route currently installed to bypass the proxy."""

    peer_tailscale_ip: str = ""
    endpoint_ip: str = ""
    address_family: str = ""
    interface_index: int = 0
    next_hop: str = ""
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class LinkOptions:
    """Options for a link optimisation run."""

    auto_bypass: bool = False
    latest_latency: timedelta = timedelta(0)


@dataclass(frozen=True)
class LinkDecision:
    """What the link guardian decided to do."""

    status: str = ""
    action: str = ""
    message: str = ""


@dataclass(frozen=True)
class LinkResult:
    """The outcome of a link optimisation run."""

    peer_tailscale_ip: str = ""
    before: PeerPathReport = field(default_factory=PeerPathReport)
    after: PeerPathReport = field(default_factory=PeerPathReport)
    decision: LinkDecision = field(default_factory=LinkDecision)
    active_bypass: ActiveBypass = field(default_factory=ActiveBypass)
    has_active_bypass: bool = False
    message: str = ""


class ControlKind(str, Enum):
    """How the proxy client's control interface is reached."""

    NONE = ""
    NAMED_PIPE = "named_pipe"
    HTTP = "http"


@dataclass(frozen=True)
class ControlEndpoint:
    """Address of the proxy client's control interface."""

    kind: ControlKind = ControlKind.NONE
    address: str = ""


@dataclass(frozen=True)
class TUNInterface:
    """A TUN adapter created by the proxy client."""

    name: str = ""
    status: str = ""


@dataclass(frozen=True)
class ProxyPort:
    """A local proxy entry port."""

    kind: str = ""
    port: int = 0


@dataclass(frozen=True)
class ProxyNode:
    """One selectable proxy exit node."""

    group_name: str = ""
    name: str = ""
    region: str = ""
    delay: timedelta = timedelta(0)
    tailscale_latency: str = ""
    current: bool = False


@dataclass(frozen=True)
class DiscoveryReport:
    """What was found about the local proxy client."""

    tun_interfaces: tuple[TUNInterface, ...] = ()
    proxy_ports: tuple[ProxyPort, ...] = ()
    control: ControlEndpoint = field(default_factory=ControlEndpoint)
    nodes: tuple[ProxyNode, ...] = ()


@dataclass(frozen=True)
class ApplyRequest:
    """A request to switch a proxy group to another node."""

    peer_tailscale_ip: str = ""
    group_name: str = ""
    node_name: str = ""
    previous_node: str = ""


@dataclass(frozen=True)
class ApplyResult:
    """The outcome of switching a proxy node."""

    group_name: str = ""
    node_name: str = ""
    route_type: str = ""
    latency: str = ""