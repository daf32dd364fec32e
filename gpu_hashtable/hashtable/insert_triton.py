from __future__ import annotations

from functools import lru_cache
from typing import Tuple

import chex
import jax
import jax.numpy as jnp
from jax.experimental import pallas as pl
from jax.experimental.pallas import triton as pl_triton

from .constants import STATUS_DROPPED, STATUS_IDLE, STATUS_INSERTED, STATUS_UPDATED
from .hash_utils import _parse_bool_env, _parse_int_env, home_bucket
from .types import ClaimResult, TableEntry

# EMPTY_KEY reinterpreted as int32; keys travel through the kernel bitcast.
_EMPTY_KEY_I32 = -1


def triton_insert_enabled() -> bool:
    return _parse_bool_env("GPU_HASHTABLE_TRITON_INSERT", True)


def _make_claim_slots_kernel(*, capacity: int):
    capacity_i32 = int(capacity)

    def claim_slots_kernel(
        _slot_keys_in_ref,
        _slot_values_in_ref,
        _update_count_in_ref,
        lane_key_ref,
        lane_value_ref,
        lane_home_ref,
        lane_active_ref,
        slot_keys_ref,
        slot_values_ref,
        update_count_ref,
        out_status_ref,
        out_slot_ref,
    ):
        pid = pl.program_id(axis=0)
        key = jnp.asarray(lane_key_ref[pid], dtype=jnp.int32)
        value = jnp.asarray(lane_value_ref[pid], dtype=jnp.uint32)
        home = jnp.asarray(lane_home_ref[pid], dtype=jnp.int32)
        is_active = jnp.asarray(lane_active_ref[pid], dtype=jnp.bool_)
        empty = jnp.int32(_EMPTY_KEY_I32)

        def _cond(state):
            _slot, status, probes = state
            return jnp.logical_and(
                jnp.logical_and(is_active, status == STATUS_IDLE),
                probes < capacity_i32,
            )

        def _body(state):
            slot, status, probes = state
            old = pl_triton.atomic_cas(slot_keys_ref.at[slot], empty, key)
            claimed = old == empty
            updated = jnp.logical_and(jnp.logical_not(claimed), old == key)
            wrote = jnp.logical_or(claimed, updated)

            @pl.when(wrote)
            def _store_value():
                slot_values_ref[slot] = value

            pl_triton.atomic_add(update_count_ref, 0, jnp.int32(1), mask=updated)

            status = jnp.where(
                claimed,
                jnp.int32(STATUS_INSERTED),
                jnp.where(updated, jnp.int32(STATUS_UPDATED), status),
            )
            next_slot = jnp.where(slot + 1 >= capacity_i32, jnp.int32(0), slot + 1)
            slot = jnp.where(wrote, slot, next_slot)
            return slot, status, probes + 1

        slot, status, _ = jax.lax.while_loop(
            _cond,
            _body,
            (home, jnp.int32(STATUS_IDLE), jnp.int32(0)),
        )

        # Visited every slot once without a claim or a match.
        exhausted = jnp.logical_and(is_active, status == STATUS_IDLE)
        out_status_ref[pid] = jnp.where(exhausted, jnp.int32(STATUS_DROPPED), status)
        out_slot_ref[pid] = slot

    return claim_slots_kernel


@lru_cache(maxsize=None)
def _get_claim_slots_fn(*, capacity: int, num_warps: int | None):
    if capacity <= 0:
        raise ValueError("capacity must be positive.")
    if capacity > jnp.iinfo(jnp.int32).max:
        raise ValueError("Triton claim path supports capacities below 2**31.")

    kernel = _make_claim_slots_kernel(capacity=capacity)

    compiler_params = None
    if num_warps is not None:
        compiler_params = pl_triton.CompilerParams(num_warps=num_warps)

    @jax.jit
    def _claim_slots(
        slot_keys: chex.Array,
        slot_values: chex.Array,
        lane_keys: chex.Array,
        lane_values: chex.Array,
        lane_home: chex.Array,
        lane_active: chex.Array,
    ) -> Tuple[chex.Array, chex.Array, chex.Array, chex.Array, chex.Array]:
        batch = int(lane_keys.shape[0])
        update_count = jnp.zeros((1,), dtype=jnp.int32)
        out_shape = (
            jax.ShapeDtypeStruct(slot_keys.shape, slot_keys.dtype),
            jax.ShapeDtypeStruct(slot_values.shape, slot_values.dtype),
            jax.ShapeDtypeStruct((1,), jnp.int32),
            jax.ShapeDtypeStruct((batch,), jnp.int32),
            jax.ShapeDtypeStruct((batch,), jnp.int32),
        )
        return pl.pallas_call(
            kernel,
            grid=(batch,),
            out_shape=out_shape,
            backend="triton",
            compiler_params=compiler_params,
            input_output_aliases={0: 0, 1: 1, 2: 2},
        )(
            slot_keys,
            slot_values,
            update_count,
            lane_keys,
            lane_values,
            lane_home,
            lane_active,
        )

    return _claim_slots


def claim_slots_triton(
    entries: TableEntry,
    keys: chex.Array,
    values: chex.Array,
    active: chex.Array,
    capacity: int,
) -> ClaimResult:
    """Claim slots with a hardware compare-and-swap, one Triton program per lane."""
    if jax.default_backend() != "gpu":
        raise ValueError("claim_slots_triton requires a GPU backend.")

    num_warps = _parse_int_env("GPU_HASHTABLE_TRITON_NUM_WARPS", None)
    fn = _get_claim_slots_fn(capacity=int(capacity), num_warps=num_warps)

    keys = jnp.asarray(keys, dtype=jnp.uint32).reshape(-1)
    home = home_bucket(keys, capacity).astype(jnp.int32)
    slot_keys_i32, slot_values, update_count, status, slot = fn(
        jax.lax.bitcast_convert_type(entries.key, jnp.int32),
        jnp.asarray(entries.value, dtype=jnp.uint32),
        jax.lax.bitcast_convert_type(keys, jnp.int32),
        jnp.asarray(values, dtype=jnp.uint32).reshape(-1),
        home,
        jnp.asarray(active, dtype=jnp.bool_).reshape(-1),
    )
    return ClaimResult(
        entries=TableEntry(
            key=jax.lax.bitcast_convert_type(slot_keys_i32, jnp.uint32),
            value=slot_values,
        ),
        status=status,
        slot=slot.astype(jnp.uint32),
        update_count=update_count[0].astype(jnp.uint32),
    )
