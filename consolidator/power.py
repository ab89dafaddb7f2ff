# consolidator/power.py
import math
from typing import Dict, Protocol, Sequence


class PowerModel(Protocol):
    def power(self, utilization: float) -> float:
        ...


class SpecPowerModel:
    """Linear interpolation over SPECpower samples at 0%, 10%, ..., 100% utilization."""

    def __init__(self, name: str, table: Sequence[float]):
        if len(table) != 11:
            raise ValueError(f"power table for {name} needs 11 samples, got {len(table)}")
        self.name = name
        self.table = tuple(float(w) for w in table)

    def power(self, utilization: float) -> float:
        if utilization < 0 or utilization > 1:
            raise ValueError(f"utilization must be within [0, 1], got {utilization}")
        if utilization % 0.1 == 0:
            return self.table[int(utilization * 10)]
        lo = math.floor(utilization * 10)
        hi = math.ceil(utilization * 10)
        delta = (self.table[hi] - self.table[lo]) / 10
        return self.table[lo] + delta * (utilization - lo / 10) * 100

    def __repr__(self):
        return f"SpecPowerModel({self.name})"


PM1_XEON_E5_2686V4 = SpecPowerModel(
    "pm1", [35.0, 52.0, 70.0, 78.5, 87.0, 96.5, 104.0, 108.0, 112.0, 129.0, 147.0])
PM2_AWS_GRAVITON2 = SpecPowerModel(
    "pm2", [70.8, 102.8, 137.2, 169.2, 201.2, 236.6, 268.6, 300.6, 336.0, 403.4, 451.4])
PM3_XEON_P8175M = SpecPowerModel(
    "pm3", [50.0, 75.0, 100.0, 112.0, 125.0, 137.0, 150.0, 155.0, 160.0, 135.0, 210.0])

POWER_MODELS: Dict[str, SpecPowerModel] = {
    m.name: m for m in (PM1_XEON_E5_2686V4, PM2_AWS_GRAVITON2, PM3_XEON_P8175M)
}
