from datetime import timedelta

import pytest

from portshare.controller import (
    Controller,
    Dependencies,
    DiscoveryFuncs,
    NoActiveShareError,
    NoServiceSelectedError,
    PublicChoice,
    ServiceItem,
    display_name,
    normalize_local_url,
    public_choice_for,
    status_text,
)
from portshare.models import LocalService, Share, ShareMode, ShareStatus

SVC = LocalService(id="svc-3000", name="Vite App", scheme="http", host="127.0.0.1", port=3000)
TAILNET = Share(
    id="tailnet-3000",
    service_id="svc-3000",
    mode=ShareMode.TAILNET,
    public_url="https://vite.tailnet",
    status=ShareStatus.ACTIVE,
)
PUBLIC = Share(
    id="public-3000",
    service_id="svc-3000",
    mode=ShareMode.PUBLIC,
    public_url="https://vite.example",
    status=ShareStatus.ACTIVE,
)


class FakeDiscovery:
    def __init__(self, scan=(), probe_service=None, probe_error=None):
        self.scan = list(scan)
        self.probed_url = ""
        self.probe_service = probe_service
        self.probe_error = probe_error

    def scan_common(self, timeout):
        return list(self.scan)

    def probe(self, raw_url, timeout):
        self.probed_url = raw_url
        if self.probe_error is not None:
            raise self.probe_error
        return self.probe_service


class FakeUIManager:
    def __init__(self, status=(), tailnet_share=None, public_share=None):
        self.status_list = list(status)
        self.tailnet_share = tailnet_share or Share()
        self.public_share = public_share or Share()
        self.tailnet_service = None
        self.public_service = None
        self.public_ttl = None
        self.public_long_running = None
        self.stopped = []
        self.stopped_all_public = False
        self.stopped_all = False

    def publish_tailnet(self, service):
        self.tailnet_service = service
        return self.tailnet_share

    def publish_public(self, service, ttl, long_running):
        self.public_service = service
        self.public_ttl = ttl
        self.public_long_running = long_running
        return self.public_share

    def stop(self, share, reason):
        self.stopped.append(share)
        self.status_list = [s for s in self.status_list if s.id != share.id]

    def stop_all_public(self):
        self.stopped_all_public = True

    def stop_all(self):
        self.stopped_all = True

    def status(self):
        return list(self.status_list)


def test_refresh_populates_services_and_share_state():
    ctrl = Controller(Dependencies(manager=FakeUIManager(status=[TAILNET]), discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    state = ctrl.state()
    assert len(state.services) == 1
    assert state.services[0].name == "Vite App"
    assert state.services[0].tailnet_url == "https://vite.tailnet"
    assert state.has_selection and state.selected == 0
    assert state.message == "已刷新，发现 1 个服务"


def test_add_manual_normalizes_and_selects_service():
    discovery = FakeDiscovery(
        probe_service=LocalService(id="manual-5173", name="Manual", scheme="http", host="127.0.0.1", port=5173)
    )
    ctrl = Controller(Dependencies(manager=FakeUIManager(), discovery=discovery))
    ctrl.add_manual("127.0.0.1:5173")
    assert discovery.probed_url == "http://127.0.0.1:5173"
    state = ctrl.state()
    assert len(state.services) == 1 and state.has_selection and state.selected == 0
    assert state.message == "已添加服务：Manual"


def test_publishes_selected_service():
    mgr = FakeUIManager(tailnet_share=TAILNET, public_share=PUBLIC)
    ctrl = Controller(Dependencies(manager=mgr, discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    ctrl.publish_tailnet()
    ctrl.publish_public(PublicChoice(ttl=timedelta(minutes=10)))
    assert mgr.tailnet_service.id == "svc-3000"
    assert mgr.public_service.id == "svc-3000"
    assert mgr.public_ttl == timedelta(minutes=10)
    assert mgr.public_long_running is False
    item = ctrl.state().services[0]
    assert item.tailnet_url == "https://vite.tailnet"
    assert item.public_url == "https://vite.example"
    assert item.status_text == "tailnet 与公网已开放"


def test_refresh_preserves_current_session_shares_when_status_is_empty():
    mgr = FakeUIManager(tailnet_share=TAILNET)
    ctrl = Controller(Dependencies(manager=mgr, discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    ctrl.publish_tailnet()
    ctrl.refresh()
    assert ctrl.state().services[0].tailnet_url == "https://vite.tailnet"


def test_stop_selected_stops_all_shares_for_service():
    mgr = FakeUIManager(status=[TAILNET, PUBLIC])
    ctrl = Controller(Dependencies(manager=mgr, discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    ctrl.stop_selected()
    assert len(mgr.stopped) == 2
    item = ctrl.state().services[0]
    assert item.tailnet_url == "" and item.public_url == ""
    assert item.status_text == "未发布"


def test_requires_selected_service():
    ctrl = Controller(Dependencies(manager=FakeUIManager(), discovery=FakeDiscovery()))
    with pytest.raises(NoServiceSelectedError):
        ctrl.publish_tailnet()
    assert ctrl.state().message == "请先选择一个本地服务"


def test_stop_selected_without_active_share():
    ctrl = Controller(Dependencies(manager=FakeUIManager(), discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    with pytest.raises(NoActiveShareError):
        ctrl.stop_selected()
    assert ctrl.state().message == "当前服务没有正在发布的地址"


def test_stop_all_public_keeps_tailnet_shares():
    mgr = FakeUIManager(status=[TAILNET, PUBLIC])
    ctrl = Controller(Dependencies(manager=mgr, discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    ctrl.stop_all_public()
    assert mgr.stopped_all_public is True
    item = ctrl.state().services[0]
    assert item.tailnet_url == "https://vite.tailnet"
    assert item.public_url == ""


def test_stop_all_clears_shares():
    mgr = FakeUIManager(status=[TAILNET, PUBLIC])
    ctrl = Controller(Dependencies(manager=mgr, discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    ctrl.stop_all()
    assert mgr.stopped_all is True
    assert ctrl.state().services[0].status_text == "未发布"


def test_refresh_without_services_reports_none_found():
    ctrl = Controller(Dependencies(manager=FakeUIManager(), discovery=FakeDiscovery()))
    ctrl.refresh()
    state = ctrl.state()
    assert state.selected == -1 and not state.has_selection
    assert state.message == "没有发现本地 HTTP/HTTPS 服务"


def test_add_manual_rejects_invalid_address():
    discovery = FakeDiscovery()
    ctrl = Controller(Dependencies(manager=FakeUIManager(), discovery=discovery))
    with pytest.raises(ValueError):
        ctrl.add_manual("ftp://127.0.0.1:21")
    assert ctrl.state().message.startswith("服务地址无效：")
    assert discovery.probed_url == ""


def test_add_manual_reports_probe_failure():
    discovery = FakeDiscovery(probe_error=ConnectionError("refused"))
    ctrl = Controller(Dependencies(manager=FakeUIManager(), discovery=discovery))
    with pytest.raises(ConnectionError):
        ctrl.add_manual("127.0.0.1:9")
    assert ctrl.state().message == "服务探测失败：refused"


def test_select_out_of_range_clears_selection():
    ctrl = Controller(Dependencies(manager=FakeUIManager(), discovery=FakeDiscovery(scan=[SVC])))
    ctrl.refresh()
    ctrl.select(5)
    assert ctrl.state().selected == -1
    ctrl.select(0)
    assert ctrl.state().selected == 0


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("127.0.0.1:5173", "http://127.0.0.1:5173"),
        ("  localhost:8080  ", "http://localhost:8080"),
        ("https://example.com:8443/app", "https://example.com:8443/app"),
    ],
)
def test_normalize_local_url_accepts(raw, expected):
    assert normalize_local_url(raw) == expected


@pytest.mark.parametrize(
    "raw, message",
    [
        ("", "请输入本地服务地址"),
        ("   ", "请输入本地服务地址"),
        ("ftp://host:21", "只支持 HTTP/HTTPS"),
        ("http://:80", "缺少主机名"),
        ("http://localhost", "缺少端口"),
    ],
)
def test_normalize_local_url_rejects(raw, message):
    with pytest.raises(ValueError, match=message):
        normalize_local_url(raw)


@pytest.mark.parametrize(
    "label, choice",
    [
        ("10 分钟", PublicChoice(ttl=timedelta(minutes=10))),
        ("30 分钟", PublicChoice(ttl=timedelta(minutes=30))),
        ("1 小时", PublicChoice(ttl=timedelta(hours=1))),
        ("长期开放", PublicChoice(ttl=timedelta(0), long_running=True)),
    ],
)
def test_public_choice_for(label, choice):
    assert public_choice_for(label) == choice


def test_display_name_fallbacks():
    assert display_name(LocalService(name="A", title="B", host="h", port=1)) == "A"
    assert display_name(LocalService(title="B", host="h", port=1)) == "B"
    assert display_name(LocalService(scheme="https", host="h", port=1)) == "https://h:1"


@pytest.mark.parametrize(
    "tailnet, public, expected",
    [
        ("t", "p", "tailnet 与公网已开放"),
        ("", "p", "公网已开放"),
        ("t", "", "tailnet 已开放"),
        ("", "", "未发布"),
    ],
)
def test_status_text(tailnet, public, expected):
    item = ServiceItem(id="x", name="x", local_url="x", service=SVC, tailnet_url=tailnet, public_url=public)
    assert status_text(item) == expected


def test_discovery_funcs():
    empty = DiscoveryFuncs()
    assert empty.scan_common(timedelta(seconds=1)) == []
    with pytest.raises(RuntimeError, match="probe function is not configured"):
        empty.probe("http://h:1", timedelta(seconds=1))
    funcs = DiscoveryFuncs(scan_common_func=lambda timeout: [SVC], probe_func=lambda url, timeout: SVC)
    assert funcs.scan_common(timedelta(seconds=1)) == [SVC]
    assert funcs.probe("http://h:1", timedelta(seconds=1)) == SVC