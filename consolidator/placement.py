# consolidator/placement.py
"""
Three-phase destination search.

Every capable candidate gets a weighted fitness (lower is better):

    F = b1*dU + b2*C_cycle + b3*U_per + b4*U_mem + b5*SLA_perf

1. guided: best fitness among hosts that stay under the CPU and memory bounds
2. territorial: best fitness among hosts whose CPU lands in [lower_band, upper_bound]
3. global: draw r in [F_min, F_max] and take the closest fitness at or above it,
   else the global best

Post-allocation numbers are computed over the host's residents plus the VM
as a hypothetical overlay; no host, VM or history is modified.
"""
import logging
import random
from typing import Collection, Dict, Iterable, List, NamedTuple, Optional, Sequence

from .catalog import TypeCatalog
from .detector import OverutilizationDetector
from .exceptions import ConfigurationError
from .models import Host, VM
from .predictor import dynamic_window, mean_absolute_change, weighted_moving_average

logger = logging.getLogger("consolidator.placement")

DEFAULT_WEIGHTS = (0.30, 0.15, 0.20, 0.20, 0.15)


class FitnessBreakdown(NamedTuple):
    delta_u: float
    c_cycle: float
    u_per: float
    u_mem: float
    sla_perf: float
    cpu_after: float
    mem_after: float
    total: float


class PlacementSearch:
    def __init__(self, detector: OverutilizationDetector, catalog: TypeCatalog,
                 weights: Sequence[float] = DEFAULT_WEIGHTS,
                 upper_bound: float = 0.90, lower_band: float = 0.80,
                 memory_bound: float = 0.95, cycle_gamma: float = 1.0,
                 rng: Optional[random.Random] = None, seed: Optional[int] = None):
        if len(weights) != 5 or any(w < 0 for w in weights):
            raise ConfigurationError(f"fitness needs five non-negative weights, got {weights}")
        if abs(sum(weights) - 1.0) > 1e-9:
            raise ConfigurationError(f"fitness weights must sum to 1, got {sum(weights):.6f}")
        if upper_bound <= 0 or upper_bound > 1.0:
            raise ConfigurationError("upper_bound must be in (0, 1]")
        if not 0 <= lower_band <= upper_bound:
            raise ConfigurationError(f"invalid CPU band [{lower_band}, {upper_bound}]")
        if memory_bound <= 0:
            raise ConfigurationError("memory_bound must be > 0")
        self.detector = detector
        self.catalog = catalog
        self.weights = tuple(weights)
        self.upper_bound = upper_bound
        self.lower_band = lower_band
        self.memory_bound = memory_bound
        self.cycle_gamma = cycle_gamma
        self.rng = rng or random.Random(seed)

    # ---------------- predictions ----------------

    def _forecast(self, vm: VM) -> Optional[float]:
        w = dynamic_window(vm.utilization_history, self.cycle_gamma)
        return weighted_moving_average(vm.utilization_history, w)

    def _placed_cpu(self, vm: VM) -> float:
        pred = self._forecast(vm)
        # a VM with no history is assumed to keep its current request
        return min(1.0, max(0.0, vm.current_utilization)) if pred is None else pred

    def predict_cpu_after(self, host: Host, vm: VM) -> float:
        mips = 0.0
        for resident in host.vms:
            pred = self._forecast(resident)
            mips += (0.0 if pred is None else pred) * resident.total_mips
        mips += self._placed_cpu(vm) * vm.total_mips
        return mips / host.total_mips if host.total_mips > 0 else 0.0

    def predict_memory_after(self, host: Host, vm: VM) -> float:
        mem_mb = 0.0
        for resident in host.vms:
            pred = self._forecast(resident)
            frac = self.catalog.memory_fraction(0.0 if pred is None else pred,
                                                self.catalog.require(resident))
            mem_mb += frac * resident.ram_mb
        frac = self.catalog.memory_fraction(self._placed_cpu(vm), self.catalog.require(vm))
        mem_mb += frac * vm.ram_mb
        return mem_mb / host.ram_mb if host.ram_mb > 0 else 0.0

    def power_after_allocation(self, host: Host, vm: VM) -> float:
        if host.total_mips <= 0:
            return -1.0
        u = (host.requested_mips + vm.requested_mips) / host.total_mips
        return host.power_model.power(min(1.0, max(0.0, u)))

    # ---------------- fitness ----------------

    def fitness(self, host: Host, vm: VM) -> FitnessBreakdown:
        b1, b2, b3, b4, b5 = self.weights
        delta_u = mean_absolute_change(host.utilization_history)
        c_cycle = float(dynamic_window(vm.utilization_history, self.cycle_gamma))
        cpu_after = self.predict_cpu_after(host, vm)
        u_per = 1.0 if cpu_after > self.upper_bound else 0.0
        mem_after = self.predict_memory_after(host, vm)
        sla_perf = 1.0 if self.detector.assess(host, extra_vms=(vm,)).overloaded else 0.0
        total = b1 * delta_u + b2 * c_cycle + b3 * u_per + b4 * mem_after + b5 * sla_perf
        return FitnessBreakdown(delta_u, c_cycle, u_per, mem_after, sla_perf,
                                cpu_after, mem_after, total)

    # ---------------- search ----------------

    def candidates(self, vm: VM, hosts: Iterable[Host], excluded: Collection[str]) -> List[Host]:
        return [
            h for h in hosts
            if h.host_id not in excluded
            and h.is_suitable_for_vm(vm)
            and self.power_after_allocation(h, vm) >= 0
        ]

    def find_host(self, vm: VM, hosts: Iterable[Host],
                  excluded: Collection[str] = ()) -> Optional[Host]:
        candidates = self.candidates(vm, hosts, excluded)
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]

        scores: Dict[str, FitnessBreakdown] = {}
        for h in candidates:
            scores[h.host_id] = self.fitness(h, vm)
            logger.debug("vm %s -> host %s: %s", vm.vm_id, h.host_id, scores[h.host_id])

        def best_of(pool: List[Host]) -> Optional[Host]:
            best = None
            best_val = float("inf")
            for h in pool:
                f = scores[h.host_id].total
                if f < best_val:
                    best_val = f
                    best = h
            return best

        guided = best_of([
            h for h in candidates
            if scores[h.host_id].cpu_after <= self.upper_bound
            and scores[h.host_id].mem_after <= self.memory_bound
        ])
        if guided is not None:
            return guided

        territorial = best_of([
            h for h in candidates
            if self.lower_band <= scores[h.host_id].cpu_after <= self.upper_bound
        ])
        if territorial is not None:
            return territorial

        return self._global_draw(candidates, scores)

    def _global_draw(self, candidates: List[Host], scores: Dict[str, FitnessBreakdown]) -> Host:
        values = [scores[h.host_id].total for h in candidates]
        f_min, f_max = min(values), max(values)
        r = f_min + self.rng.random() * (f_max - f_min)
        above = None
        above_val = float("inf")
        best = None
        best_val = float("inf")
        for h, f in zip(candidates, values):
            if r <= f < above_val:
                above_val = f
                above = h
            if f < best_val:
                best_val = f
                best = h
        return above if above is not None else best
