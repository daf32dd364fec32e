"""EntryStore data container and its functional API."""
from __future__ import annotations

from functools import partial

import chex
import jax
import jax.numpy as jnp

from ..core import base_dataclass
from .constants import EMPTY_KEY, KEY_DTYPE, SIZE_DTYPE, VALUE_DTYPE
from .insert import _store_insert_jit
from .launch import estimate_launch_shape
from .load_factor import check_reshape_capacity
from .lookup import _store_lookup_jit
from .reshape import _store_rehash_jit
from .types import ClaimResult, TableEntry


@partial(jax.jit, static_argnums=(0,))
def _store_build_jit(capacity: int) -> "EntryStore":
    entries = TableEntry(
        key=jnp.full((capacity,), EMPTY_KEY, dtype=KEY_DTYPE),
        value=jnp.zeros((capacity,), dtype=VALUE_DTYPE),
    )
    return EntryStore(entries=entries, used=SIZE_DTYPE(0), capacity=capacity)


def _default_active(keys: chex.Array, active: chex.Array | None) -> chex.Array:
    if active is None:
        return jnp.ones(jnp.shape(keys)[:1], dtype=jnp.bool_)
    return jnp.asarray(active, dtype=jnp.bool_)


@base_dataclass(frozen=True, static_fields=("capacity",))
class EntryStore:
    """
    Linear-probing slot array.

    ``entries`` holds ``capacity`` slots; an empty slot carries ``EMPTY_KEY``.
    ``used`` counts distinct live keys. Stores are values: every operation
    returns a new store and leaves its input untouched.
    """

    entries: TableEntry
    used: chex.Array
    capacity: int

    @staticmethod
    def build(capacity: int) -> "EntryStore":
        """Create an empty store with ``capacity`` slots."""
        capacity = int(capacity)
        if capacity <= 0:
            raise ValueError("capacity must be positive.")
        return _store_build_jit(capacity)

    @property
    def load_factor(self) -> chex.Array:
        return jnp.asarray(self.used, dtype=jnp.float32) / self.capacity

    def insert(
        self,
        keys: chex.Array,
        values: chex.Array,
        active: chex.Array | None = None,
    ) -> tuple["EntryStore", ClaimResult]:
        """Insert or update a batch; lanes with ``active=False`` are ignored.

        The store never grows here, see ``GpuHashTable.insert_batch`` for the
        load-factor policy.
        """
        return _store_insert_jit(self, keys, values, _default_active(keys, active))

    def lookup(
        self, keys: chex.Array, active: chex.Array | None = None
    ) -> tuple[chex.Array, chex.Array]:
        """Return ``(values, found)`` for a batch of keys."""
        return _store_lookup_jit(self, keys, _default_active(keys, active))

    def reshape(self, new_capacity: int) -> "EntryStore":
        """Rehash all live entries into a fresh store of ``new_capacity`` slots.

        Raises ``ValueError`` when ``new_capacity`` is smaller than ``used``.
        Under ``jax.jit`` ``used`` is not concrete and only positivity is checked.
        """
        try:
            used = int(self.used)
        except (jax.errors.ConcretizationTypeError, jax.errors.TracerIntegerConversionError):
            used = 0
        new_capacity = check_reshape_capacity(new_capacity, used)
        new_store = EntryStore.build(new_capacity)
        shape = estimate_launch_shape(self.capacity)
        rehashed, _ = _store_rehash_jit(self, new_store, num_lanes=shape.total)
        return rehashed
