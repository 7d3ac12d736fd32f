"""Controller for discovering local services and publishing them."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional, Protocol
from urllib.parse import urlsplit, urlunsplit

from .models import LocalService, Share, ShareMode, ShareStatus

DEFAULT_TIMEOUT = timedelta(milliseconds=500)

PUBLIC_DURATION_OPTIONS = ("10 分钟", "30 分钟", "1 小时", "长期开放")
DEFAULT_PUBLIC_DURATION = "30 分钟"


class NoServiceSelectedError(LookupError):
    """Raised when an action needs a selected service and none is selected."""

    def __init__(self, message: str = "no service selected") -> None:
        super().__init__(message)


class NoActiveShareError(LookupError):
    """Raised when the selected service has nothing published."""

    def __init__(self, message: str = "no active share") -> None:
        super().__init__(message)


class Manager(Protocol):
    """Publishes and stops shares."""

    def publish_tailnet(self, service: LocalService) -> Share: ...

    def publish_public(
        self, service: LocalService, ttl: timedelta, long_running: bool
    ) -> Share: ...

    def stop(self, share: Share, reason: str) -> None: ...

    def stop_all_public(self) -> None: ...

    def stop_all(self) -> None: ...

    def status(self) -> list[Share]: ...


class Discovery(Protocol):
    """Finds local HTTP/HTTPS services."""

    def scan_common(self, timeout: timedelta) -> list[LocalService]: ...

    def probe(self, raw_url: str, timeout: timedelta) -> LocalService: ...


@dataclass
class DiscoveryFuncs:
    """A Discovery built from plain callables."""

    scan_common_func: Optional[Callable[[timedelta], Iterable[LocalService]]] = None
    probe_func: Optional[Callable[[str, timedelta], LocalService]] = None

    def scan_common(self, timeout: timedelta) -> list[LocalService]:
        if self.scan_common_func is None:
            return []
        return list(self.scan_common_func(timeout))

    def probe(self, raw_url: str, timeout: timedelta) -> LocalService:
        if self.probe_func is None:
            raise RuntimeError("probe function is not configured")
        return self.probe_func(raw_url, timeout)


@dataclass
class Dependencies:
    """Collaborators handed to the application."""

    manager: Optional[Manager] = None
    discovery: Optional[Discovery] = None
    direct_manager: Any = None
    timeout: timedelta = timedelta(0)


@dataclass(frozen=True)
class PublicChoice:
    """How long a public share should stay open."""

    ttl: timedelta = timedelta(minutes=30)
    long_running: bool = False


def public_choice_for(label: str) -> PublicChoice:
    """Map a duration option from the confirmation dialog to a choice."""
    if label == "10 分钟":
        return PublicChoice(ttl=timedelta(minutes=10))
    if label == "1 小时":
        return PublicChoice(ttl=timedelta(hours=1))
    if label == "长期开放":
        return PublicChoice(ttl=timedelta(0), long_running=True)
    return PublicChoice(ttl=timedelta(minutes=30))


@dataclass(frozen=True)
class ServiceItem:
    """A service as shown in the list, with its published addresses."""

    id: str
    name: str
    local_url: str
    service: LocalService
    status_text: str = ""
    tailnet_url: str = ""
    public_url: str = ""


@dataclass(frozen=True)
class State:
    """A snapshot of the controller."""

    services: tuple[ServiceItem, ...] = ()
    selected: int = -1
    has_selection: bool = False
    message: str = ""


class Controller:
    """Keeps the list of local services and their shares in sync."""

    def __init__(self, deps: Optional[Dependencies] = None) -> None:
        deps = deps or Dependencies()
        self._manager = deps.manager
        self._discovery = deps.discovery
        self._timeout = deps.timeout or DEFAULT_TIMEOUT
        self._services: list[LocalService] = []
        self._shares: list[Share] = []
        self._selected = -1
        self._message = ""

    def refresh(self) -> None:
        if self._discovery is not None:
            self._upsert_services(self._discovery.scan_common(self._timeout))
        try:
            self._refresh_shares()
        except Exception as exc:
            self._message = f"状态刷新失败：{exc}"
            raise
        self._ensure_selection()
        if not self._services:
            self._message = "没有发现本地 HTTP/HTTPS 服务"
        else:
            self._message = f"已刷新，发现 {len(self._services)} 个服务"

    def add_manual(self, raw: str) -> None:
        try:
            normalized = normalize_local_url(raw)
        except ValueError as exc:
            self._message = f"服务地址无效：{exc}"
            raise
        if self._discovery is None:
            err = RuntimeError("service discovery is not configured")
            self._message = f"服务探测不可用：{err}"
            raise err
        try:
            service = self._discovery.probe(normalized, self._timeout)
        except Exception as exc:
            self._message = f"服务探测失败：{exc}"
            raise
        self._upsert_services([service])
        self._select_by_id(service.id)
        try:
            self._refresh_shares()
        except Exception as exc:
            self._message = f"已添加服务，但状态刷新失败：{exc}"
            raise
        self._message = "已添加服务：" + display_name(service)

    def select(self, index: int) -> None:
        if 0 <= index < len(self._services):
            self._selected = index
        else:
            self._selected = -1

    def publish_tailnet(self) -> Share:
        service = self._require_selected()
        manager = self._require_manager()
        try:
            share = manager.publish_tailnet(service)
        except Exception as exc:
            self._message = f"tailnet 发布失败：{exc}"
            raise
        self._upsert_share(share)
        self._message = "已开放到 tailnet：" + share.public_url
        return share

    def publish_public(self, choice: PublicChoice) -> Share:
        service = self._require_selected()
        manager = self._require_manager()
        try:
            share = manager.publish_public(service, choice.ttl, choice.long_running)
        except Exception as exc:
            self._message = f"公网发布失败：{exc}"
            raise
        self._upsert_share(share)
        self._message = "已开启公网：" + share.public_url
        return share

    def stop_selected(self) -> None:
        service = self._require_selected()
        active = self._shares_for_service(service.id)
        if not active:
            self._message = "当前服务没有正在发布的地址"
            raise NoActiveShareError()
        manager = self._require_manager()
        for share in active:
            try:
                manager.stop(share, "manual")
            except Exception as exc:
                self._message = f"停止发布失败：{exc}"
                raise
            self._shares = [s for s in self._shares if s.id != share.id]
        self._message = "已停止当前服务的发布"

    def stop_all_public(self) -> None:
        manager = self._require_manager()
        try:
            manager.stop_all_public()
        except Exception as exc:
            self._message = f"暂停所有公网失败：{exc}"
            raise
        self._shares = [s for s in self._shares if s.mode != ShareMode.PUBLIC]
        self._message = "已暂停所有公网发布"

    def stop_all(self) -> None:
        manager = self._require_manager()
        try:
            manager.stop_all()
        except Exception as exc:
            self._message = f"停止全部发布失败：{exc}"
            raise
        self._shares = []
        self._message = "已停止全部发布"

    def state(self) -> State:
        items = []
        for service in self._services:
            tailnet_url = ""
            public_url = ""
            for share in self._shares_for_service(service.id):
                if share.mode == ShareMode.TAILNET:
                    tailnet_url = share.public_url
                elif share.mode == ShareMode.PUBLIC:
                    public_url = share.public_url
            item = ServiceItem(
                id=service.id,
                name=display_name(service),
                local_url=local_url(service),
                service=service,
                tailnet_url=tailnet_url,
                public_url=public_url,
            )
            items.append(replace(item, status_text=status_text(item)))
        return State(
            services=tuple(items),
            selected=self._selected,
            has_selection=0 <= self._selected < len(self._services),
            message=self._message,
        )

    def _require_manager(self) -> Manager:
        if self._manager is None:
            raise RuntimeError("share manager is not configured")
        return self._manager

    def _require_selected(self) -> LocalService:
        if not 0 <= self._selected < len(self._services):
            self._message = "请先选择一个本地服务"
            raise NoServiceSelectedError()
        return self._services[self._selected]

    def _refresh_shares(self) -> None:
        if self._manager is None:
            return
        shares = list(self._manager.status())
        if not shares and self._shares:
            return
        self._shares = shares

    def _upsert_services(self, services: Iterable[LocalService]) -> None:
        for service in services:
            for position, existing in enumerate(self._services):
                if existing.id == service.id:
                    self._services[position] = service
                    break
            else:
                self._services.append(service)

    def _upsert_share(self, share: Share) -> None:
        for position, existing in enumerate(self._shares):
            if existing.id == share.id or (
                existing.service_id == share.service_id and existing.mode == share.mode
            ):
                self._shares[position] = share
                return
        self._shares.append(share)

    def _shares_for_service(self, service_id: str) -> list[Share]:
        return [
            share
            for share in self._shares
            if share.service_id == service_id and share.status == ShareStatus.ACTIVE
        ]

    def _ensure_selection(self) -> None:
        if not self._services:
            self._selected = -1
        elif not 0 <= self._selected < len(self._services):
            self._selected = 0

    def _select_by_id(self, service_id: str) -> None:
        for position, service in enumerate(self._services):
            if service.id == service_id:
                self._selected = position
                return
        self._ensure_selection()


def normalize_local_url(raw: str) -> str:
    """Validate a user-entered service address and return it as a URL."""
    raw = raw.strip()
    if not raw:
        raise ValueError("请输入本地服务地址")
    if "://" not in raw:
        raw = "http://" + raw
    parsed = urlsplit(raw)
    if parsed.scheme not in ("http", "https"):
        raise ValueError("只支持 HTTP/HTTPS")
    if not parsed.hostname:
        raise ValueError("缺少主机名")
    if parsed.port is None:
        raise ValueError("缺少端口")
    return urlunsplit(parsed)


def display_name(service: LocalService) -> str:
    return service.name or service.title or local_url(service)


def local_url(service: LocalService) -> str:
    return f"{service.scheme}://{service.host}:{service.port}"


def status_text(item: ServiceItem) -> str:
    if item.tailnet_url and item.public_url:
        return "tailnet 与公网已开放"
    if item.public_url:
        return "公网已开放"
    if item.tailnet_url:
        return "tailnet 已开放"
    return "未发布"