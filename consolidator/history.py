# consolidator/history.py
from typing import Dict, List, NamedTuple, Tuple


class HostMetric(NamedTuple):
    timestamp: float
    utilization: float
    threshold: float


class MetricHistory:
    """
    Append-only per-host series of (timestamp, cpu utilization, threshold used).
    Owned by the orchestrator/service and passed by handle to the detector.
    """

    def __init__(self):
        self._records: Dict[str, List[HostMetric]] = {}

    def append(self, host_id: str, timestamp: float, utilization: float, threshold: float) -> HostMetric:
        rec = HostMetric(float(timestamp), float(utilization), float(threshold))
        self._records.setdefault(host_id, []).append(rec)
        return rec

    def records(self, host_id: str) -> Tuple[HostMetric, ...]:
        return tuple(self._records.get(host_id, ()))

    def host_ids(self) -> List[str]:
        return list(self._records)

    def time_history(self, host_id: str) -> List[float]:
        return [r.timestamp for r in self._records.get(host_id, ())]

    def __len__(self):
        return sum(len(v) for v in self._records.values())
