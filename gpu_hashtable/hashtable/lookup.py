"""Lookup helpers for the linear-probing table."""
from __future__ import annotations

from typing import TYPE_CHECKING

import chex
import jax
import jax.numpy as jnp

from .constants import EMPTY_KEY, KEY_DTYPE, MISSING_VALUE, SIZE_DTYPE, VALUE_DTYPE
from .hash_utils import home_bucket, next_probe
from .types import TableEntry

if TYPE_CHECKING:
    from .table import EntryStore


def _lookup_parallel_internal(
    entries: TableEntry,
    keys: chex.Array,
    active: chex.Array,
    capacity: int,
) -> tuple[chex.Array, chex.Array]:
    keys = jnp.asarray(keys, dtype=KEY_DTYPE).reshape(-1)
    active = jnp.asarray(active, dtype=jnp.bool_).reshape(-1)
    batch_size = int(keys.shape[0])
    empty = KEY_DTYPE(EMPTY_KEY)
    capacity_u32 = SIZE_DTYPE(capacity)
    # The sentinel itself is never stored, so it can only miss.
    active = jnp.logical_and(active, keys != empty)

    idx = home_bucket(keys, capacity)
    values = jnp.full((batch_size,), MISSING_VALUE, dtype=VALUE_DTYPE)
    found = jnp.zeros((batch_size,), dtype=jnp.bool_)
    probes = jnp.zeros((batch_size,), dtype=SIZE_DTYPE)

    def _cond(val):
        *_, pending = val
        return jnp.any(pending)

    def _body(val):
        idx, values, found, probes, pending = val
        current = entries.key[idx]
        hit = jnp.logical_and(pending, current == keys)
        # An empty slot ends the probe path: no live key lies beyond it.
        miss = jnp.logical_and(pending, current == empty)

        values = jnp.where(hit, entries.value[idx], values)
        found = jnp.logical_or(found, hit)

        probes = probes + pending.astype(SIZE_DTYPE)
        pending = jnp.logical_and(
            pending,
            jnp.logical_not(jnp.logical_or(hit, miss)),
        )
        pending = jnp.logical_and(pending, probes < capacity_u32)
        idx = jnp.where(pending, next_probe(idx, capacity), idx)
        return idx, values, found, probes, pending

    _, values, found, _, _ = jax.lax.while_loop(
        _cond, _body, (idx, values, found, probes, active)
    )
    return values, found


@jax.jit
def _store_lookup_jit(
    store: "EntryStore", keys: chex.Array, active: chex.Array
) -> tuple[chex.Array, chex.Array]:
    return _lookup_parallel_internal(store.entries, keys, active, store.capacity)
