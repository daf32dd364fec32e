"""Shared dtypes and constants for the hash table."""

import jax.numpy as jnp

SIZE_DTYPE = jnp.uint32
KEY_DTYPE = jnp.uint32
VALUE_DTYPE = jnp.uint32

# All-bits-one marks an empty slot; it is never a valid key.
EMPTY_KEY = 0xFFFFFFFF

# Value written to `get_batch` results for keys that are not in the table.
MISSING_VALUE = 0

# Keep the load factor between these two values.
MIN_LOAD_FACTOR = 0.5
MAX_LOAD_FACTOR = 0.8

# Per-lane outcome of a claim launch.
STATUS_IDLE = 0
STATUS_INSERTED = 1
STATUS_UPDATED = 2
STATUS_DROPPED = 3
