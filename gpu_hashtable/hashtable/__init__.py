from .constants import EMPTY_KEY, MAX_LOAD_FACTOR, MIN_LOAD_FACTOR, MISSING_VALUE
from .hash_utils import home_bucket, jenkins_hash, jenkins_hash_host
from .hashtable import GpuHashTable
from .launch import LaunchShape, estimate_launch_shape, max_threads_per_group
from .load_factor import ResizeDecision, load_factor, plan_insert
from .table import EntryStore
from .types import ClaimResult, TableEntry

__all__ = [
    "EMPTY_KEY",
    "MAX_LOAD_FACTOR",
    "MIN_LOAD_FACTOR",
    "MISSING_VALUE",
    "ClaimResult",
    "EntryStore",
    "GpuHashTable",
    "LaunchShape",
    "ResizeDecision",
    "TableEntry",
    "estimate_launch_shape",
    "home_bucket",
    "jenkins_hash",
    "jenkins_hash_host",
    "load_factor",
    "max_threads_per_group",
    "plan_insert",
]
