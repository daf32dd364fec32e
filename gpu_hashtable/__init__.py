from .core import base_dataclass
from .hashtable import (
    EMPTY_KEY,
    MAX_LOAD_FACTOR,
    MIN_LOAD_FACTOR,
    MISSING_VALUE,
    EntryStore,
    GpuHashTable,
    LaunchShape,
    TableEntry,
    estimate_launch_shape,
    jenkins_hash,
    jenkins_hash_host,
    plan_insert,
)
from .memory import AllocationError, BudgetAllocator, DeviceAllocator

__all__ = [
    # hashtable/hashtable.py
    "GpuHashTable",
    # hashtable/table.py
    "EntryStore",
    "TableEntry",
    # hashtable/constants.py
    "EMPTY_KEY",
    "MAX_LOAD_FACTOR",
    "MIN_LOAD_FACTOR",
    "MISSING_VALUE",
    # hashtable/hash_utils.py
    "jenkins_hash",
    "jenkins_hash_host",
    # hashtable/launch.py
    "LaunchShape",
    "estimate_launch_shape",
    # hashtable/load_factor.py
    "plan_insert",
    # memory/allocator.py
    "AllocationError",
    "BudgetAllocator",
    "DeviceAllocator",
    # core/dataclass.py
    "base_dataclass",
]
