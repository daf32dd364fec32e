import chex
import jax
import jax.numpy as jnp
import numpy as np
import pytest

from gpu_hashtable import EMPTY_KEY, MISSING_VALUE, EntryStore
from gpu_hashtable.hashtable.constants import (
    STATUS_DROPPED,
    STATUS_IDLE,
    STATUS_INSERTED,
    STATUS_UPDATED,
)
from gpu_hashtable.hashtable.insert import _resolve_slot_conflicts, claim_slots_xla


EMPTY = jnp.uint32(EMPTY_KEY)


def u32(x):
    return jnp.asarray(x, dtype=jnp.uint32)


def test_build_empty_store():
    store = EntryStore.build(16)
    assert store.capacity == 16
    assert int(store.used) == 0
    assert bool(jnp.all(store.entries.key == EMPTY))
    assert bool(jnp.all(store.entries.value == 0))
    assert float(store.load_factor) == 0.0
    with pytest.raises(ValueError):
        EntryStore.build(0)


def test_resolve_slot_conflicts_lowest_lane_wins():
    winners = _resolve_slot_conflicts(u32([3, 3, 5, 3]), jnp.asarray([True, True, True, False]))
    np.testing.assert_array_equal(np.asarray(winners), [True, False, True, False])


def test_insert_then_lookup():
    store = EntryStore.build(32)
    keys = u32([1, 2, 3, 4, 5])
    values = u32([10, 20, 30, 40, 50])
    store, result = store.insert(keys, values)

    assert int(store.used) == 5
    assert int(result.update_count) == 0
    assert bool(jnp.all(result.status == STATUS_INSERTED))
    # Every lane reports the slot holding its key.
    np.testing.assert_array_equal(
        np.asarray(store.entries.key[result.slot]), np.asarray(keys)
    )

    found_values, found = store.lookup(u32([5, 4, 3, 2, 1, 99]))
    np.testing.assert_array_equal(np.asarray(found_values), [50, 40, 30, 20, 10, MISSING_VALUE])
    np.testing.assert_array_equal(np.asarray(found), [True] * 5 + [False])


def test_update_keeps_used():
    store = EntryStore.build(16)
    store, _ = store.insert(u32([7, 8]), u32([1, 2]))
    store, result = store.insert(u32([7]), u32([100]))
    assert int(result.update_count) == 1
    assert int(result.status[0]) == STATUS_UPDATED
    assert int(store.used) == 2
    values, _ = store.lookup(u32([7, 8]))
    np.testing.assert_array_equal(np.asarray(values), [100, 2])


def test_duplicate_keys_within_one_batch():
    store = EntryStore.build(16)
    store, result = store.insert(u32([7, 7, 7, 9]), u32([1, 2, 3, 4]))

    assert int(store.used) == 2
    assert int(result.update_count) == 2
    assert int(jnp.sum(store.entries.key == 7)) == 1
    values, found = store.lookup(u32([7, 9]))
    assert bool(jnp.all(found))
    assert int(values[0]) in {1, 2, 3}
    assert int(values[1]) == 4


def test_inactive_lanes_are_ignored():
    store = EntryStore.build(16)
    active = jnp.asarray([True, False, True])
    store, result = store.insert(u32([1, 2, 3]), u32([10, 20, 30]), active)

    assert int(store.used) == 2
    assert int(result.status[1]) == STATUS_IDLE
    _, found = store.lookup(u32([1, 2, 3]))
    np.testing.assert_array_equal(np.asarray(found), [True, False, True])


def test_exhausted_probe_sequence_drops_keys():
    store = EntryStore.build(4)
    keys = u32([10, 20, 30, 40, 50, 60])
    store, result = store.insert(keys, keys + 1)

    status = np.asarray(result.status)
    assert int(np.sum(status == STATUS_INSERTED)) == 4
    assert int(np.sum(status == STATUS_DROPPED)) == 2
    assert not bool(jnp.any(store.entries.key == EMPTY))
    # Dropped keys are still counted.
    assert int(store.used) == 6

    stored = store.entries.key
    values, found = store.lookup(stored)
    assert bool(jnp.all(found))
    np.testing.assert_array_equal(np.asarray(values), np.asarray(stored + 1))

    dropped = keys[status == STATUS_DROPPED]
    _, found = store.lookup(dropped)
    assert not bool(jnp.any(found))


def test_update_in_full_table():
    store = EntryStore.build(4)
    store, _ = store.insert(u32([1, 2, 3, 4]), u32([1, 2, 3, 4]))
    assert not bool(jnp.any(store.entries.key == EMPTY))

    store, result = store.insert(u32([3]), u32([33]))
    assert int(result.status[0]) == STATUS_UPDATED
    assert int(store.used) == 4
    values, found = store.lookup(u32([3, 5]))
    np.testing.assert_array_equal(np.asarray(values), [33, MISSING_VALUE])
    np.testing.assert_array_equal(np.asarray(found), [True, False])


def test_sentinel_key_never_matches():
    store = EntryStore.build(8)
    values, found = store.lookup(u32([EMPTY_KEY]))
    assert not bool(found[0])
    assert int(values[0]) == MISSING_VALUE


def test_reshape_preserves_entries():
    rng = np.random.default_rng(3)
    keys = rng.choice(1 << 30, size=200, replace=False).astype(np.uint32)
    values = rng.integers(0, 1 << 32, size=200, dtype=np.uint32)

    store = EntryStore.build(256)
    store, _ = store.insert(u32(keys), u32(values))
    grown = store.reshape(1000)

    assert grown.capacity == 1000
    assert int(grown.used) == 200
    assert int(jnp.sum(grown.entries.key != EMPTY)) == 200
    found_values, found = grown.lookup(u32(keys))
    assert bool(jnp.all(found))
    np.testing.assert_array_equal(np.asarray(found_values), values)

    # The source store is left untouched.
    assert store.capacity == 256
    old_values, _ = store.lookup(u32(keys))
    np.testing.assert_array_equal(np.asarray(old_values), values)


def test_reshape_rejects_capacity_below_used():
    store = EntryStore.build(16)
    store, _ = store.insert(jnp.arange(1, 11, dtype=jnp.uint32), jnp.arange(1, 11, dtype=jnp.uint32))
    with pytest.raises(ValueError):
        store.reshape(4)
    with pytest.raises(ValueError):
        store.reshape(0)

    exact = store.reshape(10)
    assert int(exact.used) == 10
    _, found = exact.lookup(jnp.arange(1, 11, dtype=jnp.uint32))
    assert bool(jnp.all(found))


def test_sentinel_lanes_are_not_inserted():
    store = EntryStore.build(8)
    store, result = store.insert(u32([EMPTY_KEY, 5]), u32([1, 50]))
    assert int(store.used) == 1
    assert int(result.status[0]) == STATUS_IDLE
    assert int(result.status[1]) == STATUS_INSERTED
    assert int(jnp.sum(store.entries.key != EMPTY)) == 1


def test_store_operations_compose_under_jit():
    @jax.jit
    def insert_and_lookup(store, keys, values):
        store, _ = store.insert(keys, values)
        return store, store.lookup(keys)

    store = EntryStore.build(64)
    keys = jnp.arange(1, 33, dtype=jnp.uint32)
    store, (values, found) = insert_and_lookup(store, keys, keys * 3)
    assert int(store.used) == 32
    assert bool(jnp.all(found))
    np.testing.assert_array_equal(np.asarray(values), np.asarray(keys * 3))

    eager_store, _ = EntryStore.build(64).insert(keys, keys * 3)
    chex.assert_trees_all_equal(store, eager_store)


def test_claim_slots_xla_reports_slots():
    store = EntryStore.build(8)
    keys = u32([11, 12, 13])
    result = claim_slots_xla(store.entries, keys, u32([1, 2, 3]), jnp.ones((3,), jnp.bool_), 8)
    slots = np.asarray(result.slot)
    assert len(set(slots.tolist())) == 3
    np.testing.assert_array_equal(np.asarray(result.entries.key)[slots], np.asarray(keys))
    np.testing.assert_array_equal(np.asarray(result.entries.value)[slots], [1, 2, 3])
