# consolidator/exceptions.py
from typing import Optional


class ConsolidationError(Exception):
    """Base class for fatal consolidation errors."""


class ConfigurationError(ConsolidationError):
    """Invalid catalog, thresholds, weights or an unclassifiable VM."""


class CapacityError(ConsolidationError):
    """A host cannot accept a VM it is required to hold."""

    def __init__(self, host_id: str, vm_id: str, detail: Optional[str] = None):
        self.host_id = host_id
        self.vm_id = vm_id
        msg = f"host {host_id} cannot accept vm {vm_id}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
