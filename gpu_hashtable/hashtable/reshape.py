"""Rehash every live entry of one store into a larger, empty store."""
from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

import chex
import jax
import jax.numpy as jnp

from .constants import EMPTY_KEY, KEY_DTYPE, VALUE_DTYPE
from .insert import claim_slots
from .types import ClaimResult

if TYPE_CHECKING:
    from .table import EntryStore


def _pad_lanes(x: chex.Array, num_lanes: int, fill_value: int) -> chex.Array:
    pad = num_lanes - int(x.shape[0])
    if pad < 0:
        raise ValueError("num_lanes must cover every slot of the source store.")
    if pad == 0:
        return x
    return jnp.concatenate([x, jnp.full((pad,), fill_value, dtype=x.dtype)])


@partial(jax.jit, static_argnames=("num_lanes",))
def _store_rehash_jit(
    old_store: "EntryStore",
    new_store: "EntryStore",
    num_lanes: int,
) -> tuple["EntryStore", ClaimResult]:
    """One lane per old slot; empty slots and padding lanes stay idle.

    A valid store holds no duplicate keys, so every active lane ends in a fresh
    claim and ``used`` carries over unchanged.
    """
    lane_keys = _pad_lanes(jnp.asarray(old_store.entries.key, dtype=KEY_DTYPE), num_lanes, EMPTY_KEY)
    lane_values = _pad_lanes(jnp.asarray(old_store.entries.value, dtype=VALUE_DTYPE), num_lanes, 0)
    active = lane_keys != KEY_DTYPE(EMPTY_KEY)

    result = claim_slots(new_store.entries, lane_keys, lane_values, active, new_store.capacity)
    return new_store.replace(entries=result.entries, used=old_store.used), result
