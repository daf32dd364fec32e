"""
Host-side controller for the device-resident hash table.

The controller owns one :class:`EntryStore`, decides when a batch needs the
table to grow, stages batches onto the device and applies the fatal-error
policy to every device operation.
"""
from __future__ import annotations

import contextlib
import sys
from typing import Any, Iterator

import jax
import numpy as np
from absl import logging

from ..memory import AllocationError, DeviceAllocator
from .constants import (
    EMPTY_KEY,
    KEY_DTYPE,
    MAX_LOAD_FACTOR,
    MIN_LOAD_FACTOR,
    SIZE_DTYPE,
    VALUE_DTYPE,
)
from .hash_utils import _parse_bool_env
from .insert import _store_insert_jit
from .launch import LaunchShape, estimate_launch_shape
from .load_factor import check_reshape_capacity, load_factor, plan_insert
from .lookup import _store_lookup_jit
from .reshape import _store_rehash_jit
from .table import EntryStore
from .types import TableEntry

_UINT32_MAX = np.iinfo(np.uint32).max


def _as_u32_batch(x: Any, name: str) -> np.ndarray:
    array = np.asarray(jax.device_get(x))
    if array.ndim != 1:
        raise ValueError(f"{name} must be a 1-D batch, got shape {array.shape}.")
    if array.dtype == np.uint32:
        return array
    if array.size == 0:
        return array.astype(np.uint32)
    if array.dtype.kind not in "iu":
        raise ValueError(f"{name} must hold integers, got dtype {array.dtype}.")
    if array.min() < 0 or array.max() > _UINT32_MAX:
        raise ValueError(f"{name} must fit in uint32.")
    return array.astype(np.uint32)


def _pad(x: np.ndarray, num_lanes: int, fill_value) -> np.ndarray:
    out = np.full((num_lanes,), fill_value, dtype=x.dtype)
    out[: x.shape[0]] = x
    return out


class GpuHashTable:
    """
    Batched uint32 -> uint32 hash table stored in accelerator memory.

    Collisions are resolved by linear probing from ``jenkins_hash(key) %
    capacity``; slots are claimed with an atomic compare-and-swap so every key
    in a batch is processed by its own worker. Before each insert batch the
    projected load factor is checked and the table is regrown to keep it at or
    below ``MAX_LOAD_FACTOR``.

    Operations on one instance must not run concurrently.

    Args:
        initial_capacity: Number of slots allocated up front.
        allocator: Device allocator used for table storage and staging
            buffers. Defaults to a :class:`DeviceAllocator` on the first local
            device.
        fatal_errors: When true (the default, or ``GPU_HASHTABLE_FATAL_ERRORS``),
            an allocation or device failure is logged and terminates the
            process. When false it is logged and re-raised.
    """

    def __init__(
        self,
        initial_capacity: int,
        allocator: DeviceAllocator | None = None,
        fatal_errors: bool | None = None,
    ):
        initial_capacity = int(initial_capacity)
        if initial_capacity <= 0:
            raise ValueError("initial_capacity must be positive.")
        if fatal_errors is None:
            fatal_errors = _parse_bool_env("GPU_HASHTABLE_FATAL_ERRORS", True)

        self._allocator = allocator if allocator is not None else DeviceAllocator()
        self._fatal_errors = bool(fatal_errors)
        self._store: EntryStore | None = None

        with self._device_guard("create"):
            self._store = self._allocate_store(initial_capacity)
        logging.info(
            "Created hash table with %d slots on %s", initial_capacity, self._allocator.device
        )

    @classmethod
    def create(cls, initial_capacity: int, **kwargs) -> "GpuHashTable":
        return cls(initial_capacity, **kwargs)

    # -- state --------------------------------------------------------------

    @property
    def store(self) -> EntryStore:
        self._check_open()
        return self._store

    @property
    def allocator(self) -> DeviceAllocator:
        return self._allocator

    @property
    def capacity(self) -> int:
        return self.store.capacity

    @property
    def used(self) -> int:
        return int(jax.device_get(self.store.used))

    @property
    def load_factor(self) -> float:
        return load_factor(self.used, self.capacity)

    @property
    def closed(self) -> bool:
        return self._store is None

    def _check_open(self) -> None:
        if self._store is None:
            raise ValueError("operation on a closed GpuHashTable.")

    # -- device plumbing ------------------------------------------------------

    @contextlib.contextmanager
    def _device_guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (AllocationError, jax.errors.JaxRuntimeError) as exc:
            if self._fatal_errors:
                logging.error("Fatal device error in %s: %s", operation, exc)
                sys.exit(1)
            logging.error("Device error in %s: %s", operation, exc)
            raise

    def _allocate_store(self, capacity: int) -> EntryStore:
        keys = self._allocator.allocate_shared((capacity,), KEY_DTYPE, EMPTY_KEY)
        try:
            values = self._allocator.allocate_shared((capacity,), VALUE_DTYPE, 0)
        except AllocationError:
            self._allocator.free(keys, kind="shared")
            raise
        return EntryStore(
            entries=TableEntry(key=keys, value=values),
            used=SIZE_DTYPE(0),
            capacity=capacity,
        )

    def _free_store(self, store: EntryStore) -> None:
        self._allocator.free(store.entries.key, kind="shared")
        self._allocator.free(store.entries.value, kind="shared")

    def _launch_shape(self, item_count: int) -> LaunchShape:
        return estimate_launch_shape(item_count, self._allocator.device)

    # -- operations -----------------------------------------------------------

    def insert_batch(self, keys: Any, values: Any) -> bool:
        """
        Insert or overwrite a batch of key/value pairs.

        Returns ``False`` for an empty batch and ``True`` otherwise. A key
        whose probe sequence is exhausted is dropped without notice; the
        load-factor ceiling keeps that from happening in practice.
        """
        self._check_open()
        keys = _as_u32_batch(keys, "keys")
        values = _as_u32_batch(values, "values")
        if keys.shape != values.shape:
            raise ValueError(
                f"keys and values must have the same length, got {keys.shape[0]} and "
                f"{values.shape[0]}."
            )
        num_keys = int(keys.shape[0])
        if num_keys == 0:
            return False
        if np.any(keys == EMPTY_KEY):
            raise ValueError(f"key {EMPTY_KEY:#x} is reserved for empty slots.")

        decision = plan_insert(
            self.used, self.capacity, num_keys, MAX_LOAD_FACTOR, MIN_LOAD_FACTOR
        )
        if decision.should_resize:
            logging.info(
                "Projected load %d/%d exceeds %.2f; growing to %d slots",
                decision.projected,
                self.capacity,
                MAX_LOAD_FACTOR,
                decision.new_capacity,
            )
            self.reshape(decision.new_capacity)

        shape = self._launch_shape(num_keys)
        lane_keys = _pad(keys, shape.total, EMPTY_KEY)
        lane_values = _pad(values, shape.total, 0)
        lane_active = _pad(np.ones((num_keys,), dtype=np.bool_), shape.total, False)

        with self._device_guard("insert_batch"), self._allocator.staged(
            lane_keys, lane_values, lane_active
        ) as (d_keys, d_values, d_active):
            store, result = _store_insert_jit(self._store, d_keys, d_values, d_active)
            store, result = self._allocator.synchronize((store, result))
        self._store = store

        if logging.vlog_is_on(1):
            logging.vlog(
                1,
                "insert_batch: %d keys, %d updates, %d groups x %d threads, load %.3f",
                num_keys,
                int(result.update_count),
                shape.groups,
                shape.threads_per_group,
                self.load_factor,
            )
        return True

    def lookup_parallel(self, keys: Any) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(values, found)``; absent keys get ``MISSING_VALUE`` and ``False``."""
        self._check_open()
        keys = _as_u32_batch(keys, "keys")
        num_keys = int(keys.shape[0])
        if num_keys == 0:
            return np.zeros((0,), dtype=np.uint32), np.zeros((0,), dtype=np.bool_)

        shape = self._launch_shape(num_keys)
        lane_keys = _pad(keys, shape.total, EMPTY_KEY)
        lane_active = _pad(np.ones((num_keys,), dtype=np.bool_), shape.total, False)

        with self._device_guard("get_batch"), self._allocator.staged(lane_keys, lane_active) as (
            d_keys,
            d_active,
        ):
            values, found = _store_lookup_jit(self._store, d_keys, d_active)
            values, found = self._allocator.synchronize((values, found))
            host_values = self._allocator.to_host(values)[:num_keys].copy()
            host_found = self._allocator.to_host(found)[:num_keys].copy()
        return host_values, host_found

    def get_batch(self, keys: Any) -> np.ndarray:
        """Look up a batch of keys; the result is a new host array owned by the caller."""
        values, _ = self.lookup_parallel(keys)
        return values

    def reshape(self, new_capacity: int) -> None:
        """
        Rehash every live entry into a freshly allocated store of ``new_capacity`` slots.

        The old store is freed only after the new one is fully populated.
        """
        self._check_open()
        used = self.used
        new_capacity = check_reshape_capacity(new_capacity, used)

        old_store = self._store
        shape = self._launch_shape(old_store.capacity)
        with self._device_guard("reshape"):
            fresh = self._allocate_store(new_capacity)
            try:
                rehashed, _ = _store_rehash_jit(old_store, fresh, num_lanes=shape.total)
                rehashed = self._allocator.synchronize(rehashed)
            except Exception:
                self._free_store(fresh)
                raise
            self._free_store(old_store)
        self._store = rehashed
        logging.info(
            "Reshaped hash table from %d to %d slots (%d keys)",
            old_store.capacity,
            new_capacity,
            used,
        )

    def close(self) -> None:
        """Release the table storage; further operations raise ``ValueError``."""
        if self._store is None:
            return
        self._free_store(self._store)
        self._store = None

    def __enter__(self) -> "GpuHashTable":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._store is None:
            return "GpuHashTable(closed)"
        return f"GpuHashTable(capacity={self.capacity}, used={self.used})"
