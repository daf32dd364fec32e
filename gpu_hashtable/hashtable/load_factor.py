"""Load-factor bookkeeping: decides when an insert batch must grow the table."""
from __future__ import annotations

import math
from typing import NamedTuple

from .constants import MAX_LOAD_FACTOR, MIN_LOAD_FACTOR


class ResizeDecision(NamedTuple):
    should_resize: bool
    new_capacity: int
    projected: int


def load_factor(used: int, capacity: int) -> float:
    if capacity <= 0:
        raise ValueError("capacity must be positive.")
    return used / capacity


def plan_insert(
    used: int,
    capacity: int,
    num_items: int,
    max_load_factor: float = MAX_LOAD_FACTOR,
    min_load_factor: float = MIN_LOAD_FACTOR,
) -> ResizeDecision:
    """
    Check the projected occupancy of an insert of ``num_items`` keys.

    The projection assumes every key is new. When it exceeds
    ``max_load_factor`` the table is regrown so that the projected count lands
    at ``min_load_factor``. The returned capacity never falls below the current one.
    """
    projected = int(used) + int(num_items)
    if load_factor(projected, capacity) <= max_load_factor:
        return ResizeDecision(False, int(capacity), projected)
    new_capacity = max(int(capacity), math.ceil(projected / min_load_factor))
    return ResizeDecision(True, new_capacity, projected)


def check_reshape_capacity(new_capacity: int, used: int) -> int:
    """Validate a reshape target; every live key must still get a slot."""
    new_capacity = int(new_capacity)
    if new_capacity <= 0:
        raise ValueError("new_capacity must be positive.")
    if new_capacity < used:
        raise ValueError(f"new_capacity {new_capacity} cannot hold the {used} keys in the table.")
    return new_capacity
