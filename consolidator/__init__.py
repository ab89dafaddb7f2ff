# consolidator/__init__.py
# Export commonly used names for convenience
from .catalog import DEFAULT_CATALOG, TypeCatalog
from .detector import OverutilizationDetector
from .exceptions import CapacityError, ConfigurationError
from .history import MetricHistory
from .models import VM, Datacenter, Host, MigrationAction
from .orchestrator import MigrationOrchestrator, build_orchestrator
from .placement import PlacementSearch
from .selection import VictimSelector

__all__ = [
    "DEFAULT_CATALOG", "TypeCatalog", "OverutilizationDetector", "CapacityError",
    "ConfigurationError", "MetricHistory", "VM", "Datacenter", "Host", "MigrationAction",
    "MigrationOrchestrator", "build_orchestrator", "PlacementSearch", "VictimSelector",
]
