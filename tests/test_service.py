"""
Service surface: controller client, periodic scheduler and the HTTP API.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from consolidator import main
from consolidator.api_client import ControllerClient
from consolidator.background import SchedulerService
from consolidator.config import load_settings
from consolidator.models import MigrationAction

HOSTS = [
    {"host_id": "h1", "mips": 2500, "pes": 16, "ram_mb": 262144, "power_model": "pm3"},
    {"host_id": "h2", "mips": 2500, "pes": 16, "ram_mb": 262144, "power_model": "pm3"},
]
VMS = [
    {"vm_id": "v1", "mips": 2500, "pes": 4, "ram_mb": 32768, "host_id": "h1",
     "utilization_history": [0.5, 0.5]},
    {"vm_id": "v2", "mips": 2500, "pes": 8, "ram_mb": 65536, "host_id": "h2",
     "utilization_history": [0.8, 0.8]},
]


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise RuntimeError(f"HTTP {self.status}")

    def json(self):
        return self.payload


class FakeController:
    def __init__(self, fail_for=()):
        self.requested = []
        self.fail_for = set(fail_for)

    def get_hosts(self):
        return HOSTS

    def get_vms(self):
        return VMS

    def request_migration(self, vm_id, source_host, target_host, reason=None):
        if vm_id in self.fail_for:
            raise RuntimeError("controller refused")
        self.requested.append((vm_id, source_host, target_host, reason))
        return {"status": "queued"}


class TestControllerClient:
    def test_token_sets_bearer_header(self):
        client = ControllerClient("http://controller:8000/", token="s3cret")
        assert client.base_url == "http://controller:8000"
        assert client.session.headers["Authorization"] == "Bearer s3cret"

    def test_inventory_endpoints(self, monkeypatch):
        client = ControllerClient("http://controller:8000")
        seen = []

        def fake_get(url, timeout=None):
            seen.append(url)
            return FakeResponse(HOSTS if url.endswith("/hosts") else VMS)

        monkeypatch.setattr(client.session, "get", fake_get)
        assert client.get_hosts() == HOSTS
        assert client.get_vms() == VMS
        assert seen == ["http://controller:8000/hosts", "http://controller:8000/vms"]

    def test_request_migration_payload(self, monkeypatch):
        client = ControllerClient("http://controller:8000")
        sent = {}

        def fake_post(url, json=None, timeout=None):
            sent["url"] = url
            sent["json"] = json
            return FakeResponse({"status": "queued"})

        monkeypatch.setattr(client.session, "post", fake_post)
        assert client.request_migration("v1", "h1", "h2", reason="test") == {"status": "queued"}
        assert sent["url"] == "http://controller:8000/migration/request"
        assert sent["json"] == {"vm_id": "v1", "source_host": "h1", "target_host": "h2",
                                "reason": "test"}

    def test_http_error_propagates(self, monkeypatch):
        client = ControllerClient("http://controller:8000")
        monkeypatch.setattr(client.session, "get", lambda url, timeout=None: FakeResponse([], 500))
        with pytest.raises(RuntimeError):
            client.get_hosts()


class TestSchedulerService:
    def test_run_cycle_advances_tick(self):
        service = SchedulerService(load_settings())
        actions = service.run_cycle(HOSTS, VMS)
        assert actions == [MigrationAction(vm_id="v1", source_host_id="h1", destination_host_id="h2")]
        assert service.tick == 1
        assert service.history.time_history("h1") == [300.0]
        assert service.last_report.drained_hosts == ["h1"]

    def test_history_survives_cycles(self):
        service = SchedulerService(load_settings())
        service.run_cycle(HOSTS, VMS)
        service.run_cycle(HOSTS, VMS, tick=1000)
        assert service.history.time_history("h2") == [300.0, 1000.0]

    def test_periodic_cycle_submits_plan(self):
        controller = FakeController()
        service = SchedulerService(load_settings(), controller)
        actions = asyncio.run(service.run_periodic_cycle())
        assert len(actions) == 1
        assert controller.requested == [("v1", "h1", "h2", "predictive_consolidation")]

    def test_periodic_cycle_without_controller(self):
        assert asyncio.run(SchedulerService(load_settings()).run_periodic_cycle()) == []

    def test_submit_plan_counts_successes(self):
        service = SchedulerService(load_settings(), FakeController(fail_for={"bad"}))
        actions = [MigrationAction(vm_id=v, source_host_id="h1", destination_host_id="h2")
                   for v in ("ok", "bad", "fine")]
        assert service.submit_plan(actions) == 2


@pytest.fixture
def api(monkeypatch):
    monkeypatch.setattr(main, "service", SchedulerService(load_settings()))
    return TestClient(main.app)


class TestApi:
    def test_plan(self, api):
        resp = api.post("/scheduler/plan", json={"hosts": HOSTS, "vms": VMS, "tick": 60})
        assert resp.status_code == 200
        assert resp.json() == [{"vm_id": "v1", "source_host_id": "h1", "destination_host_id": "h2"}]

    def test_history_after_plan(self, api):
        api.post("/scheduler/plan", json={"hosts": HOSTS, "vms": VMS, "tick": 60})
        resp = api.get("/scheduler/history/h1")
        assert resp.status_code == 200
        records = resp.json()
        assert len(records) == 1
        assert records[0]["timestamp"] == 60.0
        assert records[0]["threshold"] == 0.9

    def test_tracked_hosts(self, api):
        assert api.get("/scheduler/history").json() == []
        api.post("/scheduler/plan", json={"hosts": HOSTS, "vms": VMS, "tick": 60})
        assert api.get("/scheduler/history").json() == ["h1", "h2"]

    def test_unknown_vm_shape_is_rejected(self, api):
        odd = dict(VMS[0], vm_id="odd", mips=1234)
        resp = api.post("/scheduler/plan", json={"hosts": HOSTS, "vms": [odd]})
        assert resp.status_code == 422

    def test_invalid_samples_are_rejected(self, api):
        bad = dict(VMS[0], utilization_history=[2.0])
        resp = api.post("/scheduler/plan", json={"hosts": HOSTS, "vms": [bad]})
        assert resp.status_code == 422

    def test_health(self, api):
        resp = api.get("/scheduler/health")
        assert resp.json() == {"status": "ok", "tick": 0}
