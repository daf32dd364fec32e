import chex

from ..core import base_dataclass


@base_dataclass(frozen=True)
class TableEntry:
    """Slots stored as a struct of arrays: ``key[i]`` and ``value[i]`` form slot ``i``."""

    key: chex.Array
    value: chex.Array


@base_dataclass(frozen=True)
class ClaimResult:
    """Outcome of one claim launch.

    ``status`` holds one of the ``STATUS_*`` codes per lane and ``slot`` the
    index the lane ended on. ``update_count`` is the number of lanes that
    overwrote an existing key.
    """

    entries: TableEntry
    status: chex.Array
    slot: chex.Array
    update_count: chex.Array


__all__ = ["TableEntry", "ClaimResult"]
