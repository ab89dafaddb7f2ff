# consolidator/detector.py
"""
Multi-objective overutilized host detection (MOHD).

A host is overloaded if its predicted CPU utilization exceeds the CPU
threshold, or, CPU being fine, its predicted memory use reaches
``mem_threshold_frac`` of host RAM. Per-VM CPU is forecast with a weighted
moving average over an adaptive window; memory is inferred from the CPU
forecast through the VM type's memory-to-CPU ratio.
"""
import enum
import logging
from typing import Iterable, List, NamedTuple, Optional

from .catalog import TypeCatalog
from .exceptions import ConfigurationError
from .history import MetricHistory
from .models import Host, VM
from .predictor import adaptive_window, weighted_moving_average

logger = logging.getLogger("consolidator.detector")


class OverloadCause(str, enum.Enum):
    CPU = "cpu"
    MEMORY = "memory"


class Verdict(NamedTuple):
    overloaded: bool
    cause: Optional[OverloadCause]
    predicted_cpu: float
    predicted_mem_mb: float


HEALTHY_EMPTY = Verdict(False, None, 0.0, 0.0)


class OverutilizationDetector:
    def __init__(self, catalog: TypeCatalog, history: MetricHistory,
                 epsilon: float = 0.2, base_window: int = 5, theta: float = 0.1,
                 cpu_threshold: float = 0.9, mem_threshold_frac: float = 0.9):
        if epsilon < 0:
            raise ConfigurationError("epsilon must be >= 0")
        if base_window < 1:
            raise ConfigurationError("base_window must be >= 1")
        if theta < 0:
            raise ConfigurationError("theta must be >= 0")
        if cpu_threshold <= 0 or cpu_threshold > 1.0:
            raise ConfigurationError("cpu_threshold must be in (0, 1]")
        if mem_threshold_frac <= 0 or mem_threshold_frac > 1.0:
            raise ConfigurationError("mem_threshold_frac must be in (0, 1]")
        self.catalog = catalog
        self.history = history
        self.epsilon = epsilon
        self.base_window = base_window
        self.theta = theta
        self.cpu_threshold = cpu_threshold
        self.mem_threshold_frac = mem_threshold_frac

    def forecast_cpu(self, vm: VM) -> float:
        hist = vm.utilization_history
        w = adaptive_window(hist, self.base_window, self.epsilon, self.theta)
        pred = weighted_moving_average(hist, w)
        return 0.0 if pred is None else pred

    def assess(self, host: Host, extra_vms: Iterable[VM] = ()) -> Verdict:
        """
        Classify ``host`` as if ``extra_vms`` were also resident. Pure: neither the
        host nor the metric history is touched.
        """
        vms: List[VM] = list(host.vms) + list(extra_vms)
        if not vms:
            return HEALTHY_EMPTY

        cpu = [self.forecast_cpu(vm) for vm in vms]
        predicted_mips = sum(c * vm.total_mips for c, vm in zip(cpu, vms))
        u = predicted_mips / host.total_mips if host.total_mips > 0 else 0.0
        if u > self.cpu_threshold:
            return Verdict(True, OverloadCause.CPU, u, 0.0)

        mem_mb = 0.0
        for c, vm in zip(cpu, vms):
            vm_type = self.catalog.require(vm)
            mem_mb += self.catalog.memory_fraction(c, vm_type) * vm.ram_mb
        if mem_mb >= self.mem_threshold_frac * host.ram_mb:
            return Verdict(True, OverloadCause.MEMORY, u, mem_mb)
        return Verdict(False, None, u, mem_mb)

    def is_over_utilized(self, host: Host, timestamp: float) -> bool:
        verdict = self.assess(host)
        self.history.append(host.host_id, timestamp, host.cpu_utilization, self.cpu_threshold)
        if verdict.overloaded:
            logger.debug("host %s overloaded (%s): cpu=%.3f mem=%.0fMB",
                         host.host_id, verdict.cause.value, verdict.predicted_cpu,
                         verdict.predicted_mem_mb)
        return verdict.overloaded
