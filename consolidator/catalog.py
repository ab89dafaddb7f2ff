# consolidator/catalog.py
import math
from typing import List, NamedTuple, Optional, Sequence, Union

from .exceptions import ConfigurationError
from .predictor import infer_memory_fraction

MIPS_EPS_REL = 1e-6
DEFAULT_RATIO = 1.0


class VmType(NamedTuple):
    index: int
    mips: float
    pes: int
    memory_ratio: float
    ram_mb: Optional[float] = None


class Matched(NamedTuple):
    vm_type: VmType


class Unmatched(NamedTuple):
    nearest: VmType
    distance: float


class TypeCatalog:
    """
    Fixed table of reference VM types keyed by (per-core MIPS, core count),
    each carrying a memory-to-CPU utilization ratio.
    """

    def __init__(self, mips: Sequence[float], pes: Sequence[int], ratios: Sequence[float],
                 ram_mb: Optional[Sequence[float]] = None):
        n = len(mips)
        if n == 0:
            raise ConfigurationError("type catalog is empty")
        if len(pes) != n or len(ratios) != n or (ram_mb is not None and len(ram_mb) != n):
            raise ConfigurationError(
                f"type catalog out of sync: mips={len(mips)} pes={len(pes)} ratios={len(ratios)}"
                + ("" if ram_mb is None else f" ram={len(ram_mb)}"))
        self.types: List[VmType] = [
            VmType(i, float(mips[i]), int(pes[i]), float(ratios[i]),
                   None if ram_mb is None else float(ram_mb[i]))
            for i in range(n)
        ]

    def __len__(self):
        return len(self.types)

    def resolve(self, mips: float, pes: int) -> Union[Matched, Unmatched]:
        nearest = None
        best = math.inf
        for t in self.types:
            delta = abs(mips - t.mips)
            tol = max(abs(t.mips), 1.0) * MIPS_EPS_REL
            if delta <= tol and pes == t.pes:
                return Matched(t)
            norm = delta / max(t.mips, 1.0)
            cost = norm * norm + 0.25 * (pes - t.pes) ** 2
            if cost < best:
                best = cost
                nearest = t
        return Unmatched(nearest, best)

    def require(self, vm) -> VmType:
        result = self.resolve(vm.mips, vm.pes)
        if isinstance(result, Matched):
            return result.vm_type
        t = result.nearest
        raise ConfigurationError(
            f"unable to determine type for vm {vm.vm_id} (mips={vm.mips:.3f}, pes={vm.pes}); "
            f"nearest type={t.index} (mips={t.mips:.3f}, pes={t.pes}, distance={result.distance:.4f})")

    def default_ram_mb(self, mips: float, pes: int) -> Optional[float]:
        """Reference RAM of the matching type, None if unmatched or the catalog has no RAM column."""
        result = self.resolve(mips, pes)
        return result.vm_type.ram_mb if isinstance(result, Matched) else None

    def ratio_for(self, vm_type: Union[VmType, int, None]) -> float:
        if isinstance(vm_type, VmType):
            vm_type = vm_type.index
        if vm_type is None or not 0 <= vm_type < len(self.types):
            return DEFAULT_RATIO
        a = self.types[vm_type].memory_ratio
        if math.isnan(a) or a <= 0.0:
            return DEFAULT_RATIO
        return a

    def memory_fraction(self, cpu_fraction: float, vm_type: Union[VmType, int, None]) -> float:
        return infer_memory_fraction(cpu_fraction, self.ratio_for(vm_type))


# VM1=8 vCPU/64GB, VM2=4/32GB, VM3=4/32GB, VM4=4/64GB, VM5=64/512GB at 2500 MIPS per vCPU
VM_MIPS = [2500, 2500, 2500, 2500, 2500]
VM_PES = [8, 4, 4, 4, 64]
VM_RAM = [64 * 1024, 32 * 1024, 32 * 1024, 64 * 1024, 512 * 1024]
MEM_ALPHA = [1.00, 0.70, 2.00, 1.80, 0.80]

DEFAULT_CATALOG = TypeCatalog(VM_MIPS, VM_PES, MEM_ALPHA, ram_mb=VM_RAM)
