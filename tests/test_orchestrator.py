"""
End-to-end planning cycles over small datacenters.
"""
from collections import Counter

import pytest

from consolidator.config import load_settings
from consolidator.exceptions import CapacityError, ConfigurationError
from consolidator.models import Datacenter, MigrationAction
from consolidator.orchestrator import CycleState, MigrationOrchestrator, build_orchestrator


@pytest.fixture
def orchestrate(detector, selector, placement, history):
    def build(hosts):
        return MigrationOrchestrator(Datacenter(hosts), detector, selector, placement, history)
    return build


@pytest.fixture
def overload_scenario(overloaded_pair, make_vm, make_host):
    """h1 is over-utilized; h2 (0.45) and h3 (0.35) have 2000 MIPS each."""
    h2 = make_host("h2", pes=8, vms=[make_vm("v2", mips=250, pes=4, ram_mb=4096, history=[0.9, 0.9])])
    h3 = make_host("h3", pes=8, vms=[make_vm("v3", mips=250, pes=4, ram_mb=4096, history=[0.7, 0.7])])
    return [overloaded_pair, h2, h3]


def _membership(dc):
    return {h.host_id: set(h.vm_ids()) for h in dc}


def _residency(dc):
    return Counter(vm_id for h in dc for vm_id in h.vm_ids())


class TestOverloadRelief:
    def test_victim_moves_to_best_host(self, orchestrate, overload_scenario):
        orch = orchestrate(overload_scenario)
        actions = orch.plan_migrations(300)
        assert actions == [MigrationAction(vm_id="b", source_host_id="h1", destination_host_id="h3")]
        assert _membership(orch.datacenter) == {"h1": {"a"}, "h2": {"v2"}, "h3": {"v3", "b"}}
        assert orch.datacenter.all_vms()["b"].host_id == "h3"

    def test_every_vm_stays_on_exactly_one_host(self, orchestrate, overload_scenario):
        orch = orchestrate(overload_scenario)
        before = _residency(orch.datacenter)
        orch.plan_migrations(300)
        after = _residency(orch.datacenter)
        assert after == before
        assert set(after.values()) == {1}

    def test_report_and_history(self, orchestrate, overload_scenario, history):
        orch = orchestrate(overload_scenario)
        orch.plan_migrations(300)
        report = orch.last_report
        assert report.overloaded_hosts == ["h1"]
        assert report.evicted_vms == ["b"]
        assert report.misses == []
        assert len(history) == 3
        assert orch.state is CycleState.IDLE
        assert len(orch.execution_time_total) == 1
        assert len(orch.execution_time_vm_selection) == 1

    def test_unplaceable_victim_stays_home(self, orchestrate, overloaded_pair):
        overloaded_pair.ram_mb = 10000
        orch = orchestrate([overloaded_pair])
        assert orch.plan_migrations(300) == []
        assert _membership(orch.datacenter) == {"h1": {"a", "b"}}
        miss = orch.last_report.misses[0]
        assert (miss.vm_id, miss.origin_host_id, miss.phase) == ("b", "h1", CycleState.PLACE_VICTIMS)

    def test_restore_that_no_longer_fits_is_fatal(self, orchestrate, overloaded_pair):
        # both VMs were admitted without checks; 1024 + 2048 MB exceeds 2500 MB
        overloaded_pair.ram_mb = 2500
        orch = orchestrate([overloaded_pair])
        with pytest.raises(CapacityError) as exc:
            orch.plan_migrations(300)
        assert (exc.value.host_id, exc.value.vm_id) == ("h1", "b")

    def test_failure_mid_cycle_restores_snapshot(self, orchestrate, overload_scenario, monkeypatch):
        orch = orchestrate(overload_scenario)
        before = _membership(orch.datacenter)

        def boom(*args, **kwargs):
            raise RuntimeError("placement exploded")

        monkeypatch.setattr(orch.placement, "find_host", boom)
        with pytest.raises(RuntimeError):
            orch.plan_migrations(300)
        assert _membership(orch.datacenter) == before
        assert orch.datacenter.all_vms()["b"].host_id == "h1"
        assert orch.state is CycleState.IDLE

    def test_failed_restore_chains_original_error(self, orchestrate, overloaded_pair, monkeypatch):
        overloaded_pair.ram_mb = 2500
        orch = orchestrate([overloaded_pair])

        def boom(*args, **kwargs):
            raise RuntimeError("placement exploded")

        monkeypatch.setattr(orch.placement, "find_host", boom)
        with pytest.raises(CapacityError) as exc:
            orch.plan_migrations(300)
        assert isinstance(exc.value.__cause__, RuntimeError)
        assert str(exc.value.__cause__) == "placement exploded"
        assert orch.state is CycleState.IDLE

    @pytest.mark.parametrize("threshold", [0.0, 1.2])
    def test_underload_threshold_checked(self, detector, selector, placement, threshold):
        with pytest.raises(ConfigurationError):
            MigrationOrchestrator(Datacenter([]), detector, selector, placement,
                                  underload_threshold=threshold)


class TestUnderloadConsolidation:
    def test_drains_underloaded_host(self, orchestrate, make_vm, make_host):
        h1 = make_host("h1", vms=[make_vm("u1", history=[0.5, 0.5])])
        h2 = make_host("h2", pes=8, vms=[make_vm("v2", mips=250, pes=4, history=[0.7, 0.7])])
        orch = orchestrate([h1, h2])
        actions = orch.plan_migrations(300)
        assert actions == [MigrationAction(vm_id="u1", source_host_id="h1", destination_host_id="h2")]
        assert orch.last_report.drained_hosts == ["h1"]
        assert _membership(orch.datacenter) == {"h1": set(), "h2": {"v2", "u1"}}

    def test_partial_drain_is_rolled_back(self, orchestrate, make_vm, make_host):
        h1 = make_host("h1", vms=[make_vm("u1", ram_mb=1024, history=[0.5, 0.5]),
                                  make_vm("u2", ram_mb=60000, history=[0.5, 0.5])])
        h2 = make_host("h2", pes=8, ram_mb=50000,
                       vms=[make_vm("v2", mips=250, pes=4, ram_mb=4096, history=[0.7, 0.7])])
        orch = orchestrate([h1, h2])
        assert orch.plan_migrations(300) == []
        assert _membership(orch.datacenter) == {"h1": {"u1", "u2"}, "h2": {"v2"}}
        assert orch.datacenter.all_vms()["u1"].host_id == "h1"
        report = orch.last_report
        assert report.cancelled_drains == ["h1"]
        assert report.misses[0].vm_id == "u2"
        assert report.misses[0].phase is CycleState.DRAIN_OR_CANCEL

    def test_host_receiving_a_vm_is_not_drained(self, orchestrate, make_vm, make_host):
        h1 = make_host("h1", vms=[make_vm("n", history=[0.5, 0.5]), make_vm("m", history=[0.1])],
                       vms_migrating_in={"m"})
        h2 = make_host("h2", pes=8, vms=[make_vm("v2", mips=250, pes=4, history=[0.7, 0.7])])
        orch = orchestrate([h1, h2])
        assert orch.plan_migrations(300) == []
        assert _membership(orch.datacenter) == {"h1": {"n", "m"}, "h2": {"v2"}}

    def test_host_with_all_vms_leaving_is_not_drained(self, orchestrate, make_vm, make_host):
        h1 = make_host("h1", vms=[make_vm("u1", history=[0.5, 0.5], in_migration=True)])
        h2 = make_host("h2", pes=8, vms=[make_vm("v2", mips=250, pes=4, history=[0.7, 0.7])])
        orch = orchestrate([h1, h2])
        assert orch.plan_migrations(300) == []


def test_build_orchestrator_from_settings(make_vm, make_host):
    settings = load_settings(seed=1, gamma_cpu=0.85)
    h1 = make_host("h1", mips=2500, pes=16, ram_mb=262144,
                   vms=[make_vm("v1", mips=2500, pes=4, ram_mb=32768, history=[0.5, 0.5])])
    h2 = make_host("h2", mips=2500, pes=16, ram_mb=262144,
                   vms=[make_vm("v2", mips=2500, pes=8, ram_mb=65536, history=[0.8, 0.8])])
    orch = build_orchestrator(Datacenter([h1, h2]), settings)
    assert orch.detector.cpu_threshold == 0.85
    assert orch.placement.weights == settings.weights
    actions = orch.plan_migrations(300)
    assert [(a.vm_id, a.destination_host_id) for a in actions] == [("v1", "h2")]
