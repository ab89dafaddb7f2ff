import pytest

from consolidator.catalog import TypeCatalog
from consolidator.detector import OverutilizationDetector
from consolidator.history import MetricHistory
from consolidator.models import VM, Host
from consolidator.placement import PlacementSearch
from consolidator.selection import VictimSelector

# (per-core MIPS, cores, memory ratio)
#   0: 100 x 4, ratio 2.0    1: 175 x 4, ratio 0.5
#   2: 250 x 4, ratio 1.0    3: 100 x 1, ratio 1.0
TEST_MIPS = [100, 175, 250, 100]
TEST_PES = [4, 4, 4, 1]
TEST_RATIOS = [2.0, 0.5, 1.0, 1.0]


def _vm(vm_id, mips=100, pes=1, ram_mb=1024, history=(), **kw):
    return VM(vm_id=vm_id, mips=mips, pes=pes, ram_mb=ram_mb,
              utilization_history=list(history), **kw)


def _host(host_id, mips=250, pes=4, ram_mb=100000, vms=(), history=(), **kw):
    return Host(host_id=host_id, mips=mips, pes=pes, ram_mb=ram_mb,
                vms=list(vms), utilization_history=list(history), **kw)


@pytest.fixture
def make_vm():
    return _vm


@pytest.fixture
def make_host():
    return _host


@pytest.fixture
def catalog():
    return TypeCatalog(TEST_MIPS, TEST_PES, TEST_RATIOS)


@pytest.fixture
def history():
    return MetricHistory()


@pytest.fixture
def detector(catalog, history):
    return OverutilizationDetector(catalog, history, epsilon=0.2, base_window=3, theta=0.5,
                                   cpu_threshold=0.8, mem_threshold_frac=0.9)


@pytest.fixture
def selector(catalog):
    return VictimSelector(catalog, gamma=1.0)


@pytest.fixture
def placement(detector, catalog):
    return PlacementSearch(detector, catalog, seed=42)


@pytest.fixture
def overloaded_pair():
    """Host of capacity 1000 with VMs of capacity 400 and 700 trending up to 0.8."""
    trend = [0.5, 0.6, 0.7, 0.8]
    a = _vm("a", mips=100, pes=4, ram_mb=1024, history=trend)    # type 0, ratio 2.0
    b = _vm("b", mips=175, pes=4, ram_mb=2048, history=trend)    # type 1, ratio 0.5
    return _host("h1", mips=250, pes=4, vms=[a, b])
