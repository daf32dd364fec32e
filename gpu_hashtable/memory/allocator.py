"""Device-memory allocation primitives consumed by the hash table."""
from __future__ import annotations

import contextlib
from typing import Any, Iterator

import chex
import jax
import jax.numpy as jnp
import numpy as np
from absl import logging


class AllocationError(RuntimeError):
    """A device allocation or transfer could not be satisfied."""


class DeviceAllocator:
    """
    Allocates, copies and frees arrays on a single JAX device.

    Two kinds of allocation are distinguished:

    - ``allocate_exclusive``: short-lived per-launch buffers (staging).
    - ``allocate_shared``: long-lived table storage, read and written by every
      launch against the table.

    Both live in device memory. The allocator tracks logical bytes per kind;
    functional updates of an allocation (a kernel returning a new version of
    the same array) keep the same logical size, so callers only ``free`` the
    newest version once.
    """

    def __init__(self, device: jax.Device | None = None):
        self.device = device if device is not None else jax.local_devices()[0]
        self._bytes_in_use = {"exclusive": 0, "shared": 0}

    @property
    def bytes_in_use(self) -> int:
        return sum(self._bytes_in_use.values())

    def bytes_in_use_by_kind(self, kind: str) -> int:
        return self._bytes_in_use[kind]

    def _reserve(self, nbytes: int, kind: str) -> None:
        self._bytes_in_use[kind] += nbytes

    def _release(self, nbytes: int, kind: str) -> None:
        self._bytes_in_use[kind] = max(0, self._bytes_in_use[kind] - nbytes)

    def _allocate(self, shape, dtype, fill_value, kind: str) -> jax.Array:
        shape = tuple(int(s) for s in shape)
        nbytes = int(np.prod(shape, dtype=np.int64)) * np.dtype(dtype).itemsize
        self._reserve(nbytes, kind)
        try:
            array = jax.device_put(jnp.full(shape, fill_value, dtype=dtype), self.device)
        except jax.errors.JaxRuntimeError as exc:
            self._release(nbytes, kind)
            raise AllocationError(
                f"failed to allocate {nbytes} bytes ({kind}) on {self.device}"
            ) from exc
        logging.vlog(2, "allocated %d bytes (%s) on %s", nbytes, kind, self.device)
        return array

    def allocate_exclusive(self, shape, dtype, fill_value=0) -> jax.Array:
        return self._allocate(shape, dtype, fill_value, "exclusive")

    def allocate_shared(self, shape, dtype, fill_value=0) -> jax.Array:
        return self._allocate(shape, dtype, fill_value, "shared")

    def copy(self, host_array: Any, dtype=None, kind: str = "exclusive") -> jax.Array:
        """Copy a host array to the device; the result counts as an allocation."""
        host_array = np.asarray(host_array, dtype=dtype)
        nbytes = int(host_array.nbytes)
        self._reserve(nbytes, kind)
        try:
            return jax.device_put(host_array, self.device)
        except jax.errors.JaxRuntimeError as exc:
            self._release(nbytes, kind)
            raise AllocationError(f"failed to copy {nbytes} bytes to {self.device}") from exc

    def to_host(self, array: chex.Array) -> np.ndarray:
        return np.asarray(jax.device_get(array))

    def free(self, array: jax.Array, kind: str = "exclusive") -> None:
        self._release(int(array.nbytes), kind)
        if isinstance(array, jax.Array) and not array.is_deleted():
            array.delete()

    def synchronize(self, tree: Any) -> Any:
        """Block until every array in ``tree`` is computed."""
        return jax.block_until_ready(tree)

    @contextlib.contextmanager
    def staged(self, *host_arrays: Any, dtype=None) -> Iterator[tuple[jax.Array, ...]]:
        """Copy ``host_arrays`` to the device and free them on every exit path."""
        staged = []
        try:
            for host_array in host_arrays:
                staged.append(self.copy(host_array, dtype=dtype))
            yield tuple(staged)
        finally:
            for array in staged:
                self.free(array)


class BudgetAllocator(DeviceAllocator):
    """A :class:`DeviceAllocator` that refuses to exceed ``budget_bytes``."""

    def __init__(self, budget_bytes: int, device: jax.Device | None = None):
        if budget_bytes < 0:
            raise ValueError("budget_bytes must be non-negative.")
        super().__init__(device)
        self.budget_bytes = int(budget_bytes)
        self.peak_bytes = 0

    def _reserve(self, nbytes: int, kind: str) -> None:
        requested = self.bytes_in_use + nbytes
        if requested > self.budget_bytes:
            raise AllocationError(
                f"allocation of {nbytes} bytes ({kind}) exceeds budget: "
                f"{self.bytes_in_use} of {self.budget_bytes} bytes in use"
            )
        super()._reserve(nbytes, kind)
        self.peak_bytes = max(self.peak_bytes, self.bytes_in_use)
