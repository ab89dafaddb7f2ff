# consolidator/models.py
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .catalog import DEFAULT_CATALOG, TypeCatalog
from .exceptions import CapacityError
from .power import POWER_MODELS, PM1_XEON_E5_2686V4

# a VM migrating in costs its allocation plus this multiple of it (0.9 / 0.1)
MIGRATION_OVERHEAD = 9.0


def _check_samples(samples: List[float]) -> List[float]:
    for s in samples:
        if s < 0.0 or s > 1.0:
            raise ValueError(f"utilization sample {s} outside [0, 1]")
    return samples


class VM(BaseModel):
    vm_id: str
    mips: float                     # capacity per core
    pes: int = 1
    ram_mb: float
    utilization_history: List[float] = Field(default_factory=list)
    in_migration: bool = False
    host_id: Optional[str] = None

    @field_validator("utilization_history")
    @classmethod
    def samples_in_range(cls, v: List[float]) -> List[float]:
        return _check_samples(v)

    @property
    def total_mips(self) -> float:
        return self.mips * self.pes

    @property
    def current_utilization(self) -> float:
        return self.utilization_history[-1] if self.utilization_history else 0.0

    @property
    def requested_mips(self) -> float:
        return self.current_utilization * self.total_mips

    def record(self, sample: float):
        _check_samples([sample])
        self.utilization_history.append(sample)


class Host(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    host_id: str
    mips: float                     # per PE
    pes: int = 1
    ram_mb: float
    vms: List[VM] = Field(default_factory=list)
    utilization_history: List[float] = Field(default_factory=list)
    vms_migrating_in: Set[str] = Field(default_factory=set)
    power_model: Any = PM1_XEON_E5_2686V4

    @field_validator("utilization_history")
    @classmethod
    def samples_in_range(cls, v: List[float]) -> List[float]:
        return _check_samples(v)

    @property
    def total_mips(self) -> float:
        return self.mips * self.pes

    @property
    def allocated_ram_mb(self) -> float:
        return sum(vm.ram_mb for vm in self.vms)

    @property
    def requested_mips(self) -> float:
        total = 0.0
        for vm in self.vms:
            total += vm.requested_mips
            if vm.vm_id in self.vms_migrating_in:
                total += vm.requested_mips * MIGRATION_OVERHEAD
        return total

    @property
    def cpu_utilization(self) -> float:
        if self.total_mips <= 0:
            return 0.0
        return min(1.0, max(0.0, self.requested_mips / self.total_mips))

    def vm_ids(self) -> Tuple[str, ...]:
        return tuple(vm.vm_id for vm in self.vms)

    def has_vm(self, vm_id: str) -> bool:
        return any(vm.vm_id == vm_id for vm in self.vms)

    def fits(self, vm: VM) -> bool:
        """Static fit: core shape and RAM only."""
        return (
            vm.mips <= self.mips and
            vm.pes <= self.pes and
            self.allocated_ram_mb + vm.ram_mb <= self.ram_mb
        )

    def is_suitable_for_vm(self, vm: VM) -> bool:
        return self.fits(vm) and self.requested_mips + vm.requested_mips <= self.total_mips

    def add_vm(self, vm: VM, check: bool = True):
        if self.has_vm(vm.vm_id):
            raise CapacityError(self.host_id, vm.vm_id, "already resident")
        if check and not self.fits(vm):
            raise CapacityError(
                self.host_id, vm.vm_id,
                f"ram {self.allocated_ram_mb:.0f}+{vm.ram_mb:.0f}/{self.ram_mb:.0f} MB, "
                f"shape {vm.pes}x{vm.mips:.0f} on {self.pes}x{self.mips:.0f}")
        self.vms.append(vm)
        vm.host_id = self.host_id

    def remove_vm(self, vm: VM):
        self.vms = [v for v in self.vms if v.vm_id != vm.vm_id]
        if vm.host_id == self.host_id:
            vm.host_id = None

    def __repr__(self):
        return (f"Host({self.host_id}, cpu={self.cpu_utilization:.2f}, "
                f"ram={self.allocated_ram_mb:.0f}/{self.ram_mb:.0f}, vms={len(self.vms)})")


class MigrationAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    vm_id: str
    source_host_id: str
    destination_host_id: str


class AllocationSnapshot(BaseModel):
    """Host -> resident VM ids taken before a planning cycle (migrating-in VMs excluded)."""
    model_config = ConfigDict(frozen=True)

    membership: Dict[str, Tuple[str, ...]]

    @classmethod
    def capture(cls, hosts: Iterable[Host]) -> "AllocationSnapshot":
        return cls(membership={
            h.host_id: tuple(vm.vm_id for vm in h.vms if vm.vm_id not in h.vms_migrating_in)
            for h in hosts
        })

    def host_of(self, vm_id: str) -> Optional[str]:
        for host_id, ids in self.membership.items():
            if vm_id in ids:
                return host_id
        return None

    def membership_after(self, actions: Iterable[MigrationAction]) -> Dict[str, List[str]]:
        target = {h: list(ids) for h, ids in self.membership.items()}
        for a in actions:
            src = self.host_of(a.vm_id)
            if src is not None:
                target[src].remove(a.vm_id)
            target.setdefault(a.destination_host_id, []).append(a.vm_id)
        return target


class Datacenter:
    """Ordered host collection with VM lookup; the only state the orchestrator mutates."""

    def __init__(self, hosts: Iterable[Host]):
        self.hosts: Dict[str, Host] = {}
        for h in hosts:
            self.hosts[h.host_id] = h
            for vm in h.vms:
                vm.host_id = h.host_id

    def __iter__(self):
        return iter(self.hosts.values())

    def __len__(self):
        return len(self.hosts)

    def host(self, host_id: str) -> Host:
        return self.hosts[host_id]

    def all_vms(self) -> Dict[str, VM]:
        out: Dict[str, VM] = {}
        for h in self.hosts.values():
            for vm in h.vms:
                out[vm.vm_id] = vm
        return out

    @classmethod
    def from_inventory(cls, hosts: List[Dict[str, Any]], vms: List[Dict[str, Any]],
                       catalog: TypeCatalog = DEFAULT_CATALOG) -> "Datacenter":
        """
        Build from controller JSON. Hosts may carry ``power_model`` as a name from
        POWER_MODELS; VMs are attached by ``host_id``. VMs without a known host are skipped.
        A VM reported without ``ram_mb`` gets the reference RAM of its catalog type.
        """
        built: List[Host] = []
        for raw in hosts:
            data = dict(raw)
            model = POWER_MODELS.get(data.pop("power_model", None), PM1_XEON_E5_2686V4)
            built.append(Host(power_model=model, **data))
        by_id = {h.host_id: h for h in built}
        for raw in vms:
            data = dict(raw)
            if data.get("ram_mb") is None:
                data["ram_mb"] = catalog.default_ram_mb(data.get("mips", 0.0), data.get("pes", 1))
            vm = VM(**data)
            host = by_id.get(vm.host_id)
            if host is None:
                continue
            host.vms.append(vm)
        return cls(built)
