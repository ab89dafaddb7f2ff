# consolidator/selection.py
"""
Minimum predicted memory VM selection.

CPU is predicted with a plain moving average over a dynamic window, mapped
to a memory fraction through the VM type ratio and scaled by the VM's RAM.
The VM with the smallest predicted memory pressure leaves first. A VM
without history falls back to its RAM (classic minimum migration time).
"""
import logging
from typing import Optional

from .catalog import TypeCatalog
from .models import Host, VM
from .predictor import dynamic_window, moving_average

logger = logging.getLogger("consolidator.selection")


class VictimSelector:
    def __init__(self, catalog: TypeCatalog, gamma: float = 1.0):
        self.catalog = catalog
        self.gamma = gamma

    def metric(self, vm: VM) -> float:
        window = dynamic_window(vm.utilization_history, self.gamma)
        cpu_pred = moving_average(vm.utilization_history, window)
        if cpu_pred is None:
            return vm.ram_mb
        vm_type = self.catalog.require(vm)
        return self.catalog.memory_fraction(cpu_pred, vm_type) * vm.ram_mb

    def select_victim(self, host: Host) -> Optional[VM]:
        victim = None
        best = float("inf")
        for vm in host.vms:
            if vm.in_migration:
                continue
            m = self.metric(vm)
            if m < best:
                best = m
                victim = vm
        if victim is not None:
            logger.debug("victim on host %s: vm %s (metric=%.1f)", host.host_id, victim.vm_id, best)
        return victim
