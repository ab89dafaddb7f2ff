# consolidator/orchestrator.py
"""
Per-tick migration planning.

    SNAPSHOT -> DETECT_OVERLOADED -> SELECT_VICTIMS -> PLACE_VICTIMS
             -> DETECT_UNDERLOADED -> DRAIN_OR_CANCEL -> RESTORE_AND_COMMIT

Steps 3-6 mutate real host membership speculatively; RESTORE_AND_COMMIT then
rewrites membership to the snapshot plus exactly the committed actions. If
anything raises before that, the snapshot is put back untouched.
"""
import enum
import logging
import time
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from .catalog import DEFAULT_CATALOG, TypeCatalog
from .detector import OverutilizationDetector
from .exceptions import CapacityError, ConfigurationError
from .history import MetricHistory
from .models import VM, AllocationSnapshot, Datacenter, Host, MigrationAction
from .placement import PlacementSearch
from .selection import VictimSelector

logger = logging.getLogger("consolidator.orchestrator")

UNDERLOAD_THRESHOLD = 0.30


class CycleState(str, enum.Enum):
    IDLE = "idle"
    SNAPSHOT = "snapshot"
    DETECT_OVERLOADED = "detect_overloaded"
    SELECT_VICTIMS = "select_victims"
    PLACE_VICTIMS = "place_victims"
    DETECT_UNDERLOADED = "detect_underloaded"
    DRAIN_OR_CANCEL = "drain_or_cancel"
    RESTORE_AND_COMMIT = "restore_and_commit"


class PlacementMiss(BaseModel):
    vm_id: str
    origin_host_id: str
    phase: CycleState


class CycleReport(BaseModel):
    tick: float
    actions: List[MigrationAction] = Field(default_factory=list)
    overloaded_hosts: List[str] = Field(default_factory=list)
    evicted_vms: List[str] = Field(default_factory=list)
    misses: List[PlacementMiss] = Field(default_factory=list)
    drained_hosts: List[str] = Field(default_factory=list)
    cancelled_drains: List[str] = Field(default_factory=list)


class MigrationOrchestrator:
    def __init__(self, datacenter: Datacenter, detector: OverutilizationDetector,
                 selector: VictimSelector, placement: PlacementSearch,
                 history: Optional[MetricHistory] = None,
                 underload_threshold: float = UNDERLOAD_THRESHOLD):
        if underload_threshold <= 0 or underload_threshold > 1.0:
            raise ConfigurationError("underload_threshold must be in (0, 1]")
        self.datacenter = datacenter
        self.detector = detector
        self.selector = selector
        self.placement = placement
        self.history = history if history is not None else detector.history
        self.underload_threshold = underload_threshold
        self.state = CycleState.IDLE
        self.last_report: Optional[CycleReport] = None

        # seconds spent per phase, one entry per cycle
        self.execution_time_host_selection: List[float] = []
        self.execution_time_vm_selection: List[float] = []
        self.execution_time_vm_reallocation: List[float] = []
        self.execution_time_total: List[float] = []

    # ---------------- public ----------------

    def plan_migrations(self, tick: float) -> List[MigrationAction]:
        started = time.perf_counter()
        report = CycleReport(tick=tick)

        self.state = CycleState.SNAPSHOT
        snapshot = AllocationSnapshot.capture(self.datacenter)
        vms = self.datacenter.all_vms()
        migrating_in = {h.host_id: [vm for vm in h.vms if vm.vm_id in h.vms_migrating_in]
                        for h in self.datacenter}

        try:
            self.state = CycleState.DETECT_OVERLOADED
            t0 = time.perf_counter()
            overloaded = [h for h in self.datacenter if self.detector.is_over_utilized(h, tick)]
            self.execution_time_host_selection.append(time.perf_counter() - t0)
            report.overloaded_hosts = [h.host_id for h in overloaded]
            if overloaded:
                logger.info("tick %s: over-utilized hosts: %s", tick,
                            ", ".join(report.overloaded_hosts))

            self.state = CycleState.SELECT_VICTIMS
            t0 = time.perf_counter()
            evicted = self._select_victims(overloaded)
            self.execution_time_vm_selection.append(time.perf_counter() - t0)
            report.evicted_vms = [vm.vm_id for vm, _ in evicted]

            self.state = CycleState.PLACE_VICTIMS
            t0 = time.perf_counter()
            excluded = {h.host_id for h in overloaded}
            actions = self._place_victims(evicted, excluded, report)
            self.execution_time_vm_reallocation.append(time.perf_counter() - t0)

            actions.extend(self._consolidate_underloaded(excluded, actions, report))
        except BaseException as failure:
            logger.exception("tick %s: planning failed in state %s, restoring snapshot",
                             tick, self.state.value)
            try:
                self._rebuild(snapshot, [], vms, migrating_in)
            except CapacityError as e:
                raise e from failure
            finally:
                self.state = CycleState.IDLE
            raise

        self.state = CycleState.RESTORE_AND_COMMIT
        self._rebuild(snapshot, actions, vms, migrating_in)
        self.state = CycleState.IDLE

        report.actions = actions
        self.last_report = report
        self.execution_time_total.append(time.perf_counter() - started)
        logger.info("tick %s: %d migration(s) planned, %d placement miss(es), %d drain(s), %d cancelled",
                    tick, len(actions), len(report.misses), len(report.drained_hosts),
                    len(report.cancelled_drains))
        return actions

    # ---------------- steps ----------------

    def _select_victims(self, overloaded: List[Host]) -> List[Tuple[VM, Host]]:
        evicted: List[Tuple[VM, Host]] = []
        for host in overloaded:
            while True:
                vm = self.selector.select_victim(host)
                if vm is None:
                    break
                host.remove_vm(vm)
                evicted.append((vm, host))
                if not self.detector.assess(host).overloaded:
                    break
        return evicted

    def _place_victims(self, evicted: List[Tuple[VM, Host]], excluded: Set[str],
                       report: CycleReport) -> List[MigrationAction]:
        actions: List[MigrationAction] = []
        # pack the largest consumers first
        ordered = sorted(evicted, key=lambda pair: pair[0].requested_mips, reverse=True)
        for vm, origin in ordered:
            dest = self.placement.find_host(vm, self.datacenter, excluded)
            if dest is None:
                logger.warning("no destination for vm %s from over-utilized host %s",
                               vm.vm_id, origin.host_id)
                report.misses.append(PlacementMiss(vm_id=vm.vm_id, origin_host_id=origin.host_id,
                                                   phase=CycleState.PLACE_VICTIMS))
                continue
            dest.add_vm(vm)
            actions.append(MigrationAction(vm_id=vm.vm_id, source_host_id=origin.host_id,
                                           destination_host_id=dest.host_id))
            logger.info("vm %s allocated to host %s (from %s)", vm.vm_id, dest.host_id, origin.host_id)
        return actions

    def _consolidate_underloaded(self, overloaded: Set[str], placed: List[MigrationAction],
                                 report: CycleReport) -> List[MigrationAction]:
        actions: List[MigrationAction] = []
        switched_off = {h.host_id for h in self.datacenter if h.cpu_utilization == 0}

        # hosts not eligible to be picked as under-utilized
        skip_underloaded = set(overloaded) | switched_off | {a.destination_host_id for a in placed}
        # hosts not eligible to receive VMs from a drained host
        skip_placement = set(overloaded) | switched_off

        while len(skip_underloaded) < len(self.datacenter):
            self.state = CycleState.DETECT_UNDERLOADED
            host = self._underloaded_host(skip_underloaded)
            if host is None:
                break
            logger.info("under-utilized host: %s (cpu=%.3f)", host.host_id, host.cpu_utilization)
            skip_underloaded.add(host.host_id)
            skip_placement.add(host.host_id)

            self.state = CycleState.DRAIN_OR_CANCEL
            drained = self._drain(host, skip_placement, report)
            if drained is None:
                report.cancelled_drains.append(host.host_id)
                continue
            if drained:
                report.drained_hosts.append(host.host_id)
                skip_underloaded.update(a.destination_host_id for a in drained)
                actions.extend(drained)
        return actions

    def _underloaded_host(self, excluded: Set[str]) -> Optional[Host]:
        best = None
        min_util = self.underload_threshold
        for host in self.datacenter:
            if host.host_id in excluded:
                continue
            u = host.cpu_utilization
            if 0 < u < min_util and not self._all_migrating_out_or_any_in(host):
                min_util = u
                best = host
        return best

    @staticmethod
    def _all_migrating_out_or_any_in(host: Host) -> bool:
        if any(vm.vm_id in host.vms_migrating_in for vm in host.vms):
            return True
        return all(vm.in_migration for vm in host.vms)

    def _drain(self, host: Host, excluded: Set[str],
               report: CycleReport) -> Optional[List[MigrationAction]]:
        """Move every migratable VM off ``host``; None if the drain had to be cancelled."""
        movable = sorted((vm for vm in host.vms if not vm.in_migration),
                         key=lambda vm: vm.requested_mips, reverse=True)
        committed: List[Tuple[VM, Host]] = []
        for vm in movable:
            dest = self.placement.find_host(vm, self.datacenter, excluded)
            if dest is None:
                logger.warning("not all VMs can be reallocated from host %s (vm %s), "
                               "reallocation cancelled", host.host_id, vm.vm_id)
                report.misses.append(PlacementMiss(vm_id=vm.vm_id, origin_host_id=host.host_id,
                                                   phase=CycleState.DRAIN_OR_CANCEL))
                for moved, target in reversed(committed):
                    target.remove_vm(moved)
                    host.add_vm(moved, check=False)
                return None
            host.remove_vm(vm)
            dest.add_vm(vm)
            committed.append((vm, dest))
        return [MigrationAction(vm_id=vm.vm_id, source_host_id=host.host_id,
                                destination_host_id=dest.host_id)
                for vm, dest in committed]

    # ---------------- commit ----------------

    def _rebuild(self, snapshot: AllocationSnapshot, actions: List[MigrationAction],
                 vms: Dict[str, VM], migrating_in: Dict[str, List[VM]]):
        target = snapshot.membership_after(actions)
        for host in self.datacenter:
            keep = migrating_in.get(host.host_id, [])
            wanted = [vms[vm_id] for vm_id in target.get(host.host_id, [])]
            # only hosts whose membership actually changed are rewritten
            if set(host.vm_ids()) == {vm.vm_id for vm in keep + wanted}:
                continue
            host.vms = list(keep)
            for vm in wanted:
                if not host.fits(vm):
                    logger.error("couldn't restore vm %s on host %s", vm.vm_id, host.host_id)
                    raise CapacityError(host.host_id, vm.vm_id, "restoration failed")
                host.add_vm(vm, check=False)


def build_orchestrator(datacenter: Datacenter, settings, history: Optional[MetricHistory] = None,
                       catalog: Optional[TypeCatalog] = None) -> MigrationOrchestrator:
    """Wire detector, selector and placement search from a Settings object."""
    catalog = catalog or DEFAULT_CATALOG
    history = history if history is not None else MetricHistory()
    detector = OverutilizationDetector(
        catalog, history,
        epsilon=settings.epsilon,
        base_window=settings.base_window,
        theta=settings.theta,
        cpu_threshold=settings.gamma_cpu,
        mem_threshold_frac=settings.mem_threshold_frac,
    )
    selector = VictimSelector(catalog, gamma=settings.selection_gamma)
    placement = PlacementSearch(
        detector, catalog,
        weights=settings.weights,
        upper_bound=settings.upper_bound,
        lower_band=settings.lower_band,
        memory_bound=settings.memory_bound,
        cycle_gamma=settings.cycle_gamma,
        seed=settings.seed,
    )
    return MigrationOrchestrator(datacenter, detector, selector, placement, history,
                                 underload_threshold=settings.underload_threshold)
