"""Insertion: the slot-claiming protocol shared by batched insert and reshape."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

import chex
import jax
import jax.numpy as jnp

from .constants import (
    EMPTY_KEY,
    KEY_DTYPE,
    SIZE_DTYPE,
    STATUS_DROPPED,
    STATUS_IDLE,
    STATUS_INSERTED,
    STATUS_UPDATED,
    VALUE_DTYPE,
)
from .hash_utils import home_bucket, next_probe
from .insert_triton import claim_slots_triton, triton_insert_enabled
from .types import ClaimResult, TableEntry

if TYPE_CHECKING:
    from .table import EntryStore


def _scatter_safe_indices(
    indices: chex.Array,
    mask: chex.Array,
    *,
    out_of_bounds: int,
) -> chex.Array:
    indices_i32 = jnp.asarray(indices, dtype=jnp.int32).reshape(-1)
    mask = jnp.asarray(mask, dtype=jnp.bool_).reshape(-1)
    oob = jnp.broadcast_to(jnp.int32(int(out_of_bounds)), indices_i32.shape)
    return cast(jax.Array, jax.lax.select(mask, indices_i32, oob))


def _resolve_slot_conflicts(slots: chex.Array, active: chex.Array) -> chex.Array:
    """Pick one winner per contended slot, the lowest lane index.

    Plays the role of the atomic compare-and-swap: of all active lanes that
    target the same empty slot in a round, exactly one claims it.
    """
    active = jnp.asarray(active, dtype=jnp.bool_).reshape(-1)
    slots = jnp.asarray(slots, dtype=jnp.uint32).reshape(-1)
    batch_size = int(slots.shape[0])

    lane_idx = jnp.arange(batch_size, dtype=jnp.uint32)
    sentinel = jnp.uint32(0xFFFFFFFF)
    sort_keys = cast(jax.Array, jnp.where(active, slots, sentinel))

    operand = cast(Any, (sort_keys, lane_idx))
    sorted_keys, sorted_lane_idx = cast(
        tuple[jax.Array, jax.Array],
        jax.lax.sort(operand, dimension=0, is_stable=True, num_keys=1),
    )

    is_first = jnp.concatenate(
        [jnp.array([True]), sorted_keys[1:] != sorted_keys[:-1]],
        axis=0,
    )
    is_valid = sorted_keys != sentinel
    winners_in_sorted = jnp.logical_and(is_first, is_valid)

    winners = jnp.zeros((batch_size,), dtype=jnp.bool_)
    return winners.at[sorted_lane_idx].set(winners_in_sorted)


def claim_slots_xla(
    entries: TableEntry,
    keys: chex.Array,
    values: chex.Array,
    active: chex.Array,
    capacity: int,
) -> ClaimResult:
    """Portable claim protocol, evaluated in lock-step rounds.

    Every round each pending lane inspects the slot at its probe index:

    - an empty slot is contended with a compare-and-swap; the winner writes
      its key and value,
    - a lane that finds (or lost the swap to) its own key overwrites the value,
    - any other key sends the lane to the next slot,
    - a lane that wraps back to its home bucket is dropped.
    """
    keys = jnp.asarray(keys, dtype=KEY_DTYPE).reshape(-1)
    values = jnp.asarray(values, dtype=VALUE_DTYPE).reshape(-1)
    active = jnp.asarray(active, dtype=jnp.bool_).reshape(-1)
    batch_size = int(keys.shape[0])
    empty = KEY_DTYPE(EMPTY_KEY)

    home = home_bucket(keys, capacity)
    status = jnp.full((batch_size,), STATUS_IDLE, dtype=jnp.int32)

    def _cond(val):
        *_, pending = val
        return jnp.any(pending)

    def _body(val):
        slot_keys, slot_values, idx, status, pending = val

        current = slot_keys[idx]
        attempt = jnp.logical_and(pending, current == empty)
        winners = _resolve_slot_conflicts(idx, attempt)
        win_idx = _scatter_safe_indices(idx, winners, out_of_bounds=capacity)
        slot_keys = slot_keys.at[win_idx].set(keys, mode="drop")
        slot_values = slot_values.at[win_idx].set(values, mode="drop")

        # Losers see what the winner wrote, as a failed swap returns the prior key.
        observed = slot_keys[idx]
        still_pending = jnp.logical_and(pending, jnp.logical_not(winners))
        updated = jnp.logical_and(still_pending, observed == keys)
        upd_idx = _scatter_safe_indices(idx, updated, out_of_bounds=capacity)
        slot_values = slot_values.at[upd_idx].set(values, mode="drop")

        advance = jnp.logical_and(still_pending, jnp.logical_not(updated))
        next_idx = next_probe(idx, capacity)
        exhausted = jnp.logical_and(advance, next_idx == home)

        status = jnp.where(winners, jnp.int32(STATUS_INSERTED), status)
        status = jnp.where(updated, jnp.int32(STATUS_UPDATED), status)
        status = jnp.where(exhausted, jnp.int32(STATUS_DROPPED), status)

        pending = jnp.logical_and(advance, jnp.logical_not(exhausted))
        idx = jnp.where(pending, next_idx, idx)
        return slot_keys, slot_values, idx, status, pending

    slot_keys, slot_values, idx, status, _ = jax.lax.while_loop(
        _cond,
        _body,
        (
            jnp.asarray(entries.key, dtype=KEY_DTYPE),
            jnp.asarray(entries.value, dtype=VALUE_DTYPE),
            home,
            status,
            active,
        ),
    )
    update_count = jnp.sum(status == STATUS_UPDATED, dtype=SIZE_DTYPE)
    return ClaimResult(
        entries=TableEntry(key=slot_keys, value=slot_values),
        status=status,
        slot=idx,
        update_count=update_count,
    )


def claim_slots(
    entries: TableEntry,
    keys: chex.Array,
    values: chex.Array,
    active: chex.Array,
    capacity: int,
) -> ClaimResult:
    use_triton = jax.default_backend() == "gpu" and triton_insert_enabled()
    if use_triton:
        return claim_slots_triton(entries, keys, values, active, capacity)
    return claim_slots_xla(entries, keys, values, active, capacity)


@jax.jit
def _store_insert_jit(
    store: "EntryStore",
    keys: chex.Array,
    values: chex.Array,
    active: chex.Array,
) -> tuple["EntryStore", ClaimResult]:
    keys = jnp.asarray(keys, dtype=KEY_DTYPE).reshape(-1)
    # The sentinel would claim an empty slot by writing itself; it is never stored.
    active = jnp.logical_and(
        jnp.asarray(active, dtype=jnp.bool_).reshape(-1),
        keys != KEY_DTYPE(EMPTY_KEY),
    )
    result = claim_slots(store.entries, keys, values, active, store.capacity)
    num_active = jnp.sum(active, dtype=SIZE_DTYPE)
    # Dropped lanes are still counted; only in-place updates are subtracted.
    used = store.used + num_active - result.update_count
    return store.replace(entries=result.entries, used=used), result
