"""Hash helpers and environment flags for the linear-probing table."""
from __future__ import annotations

import os

import chex
import jax.numpy as jnp
import numpy as np

from .constants import SIZE_DTYPE

# (add-or-xor, constant, shift direction, shift amount, combine-with) per round.
_JENKINS_ROUNDS = (
    ("add", 0x7ED55D16, "left", 12, "add"),
    ("xor", 0xC761C23C, "right", 19, "xor"),
    ("add", 0x165667B1, "left", 5, "add"),
    ("add", 0xD3A2646C, "left", 9, "xor"),
    ("add", 0xFD7046C5, "left", 3, "add"),
    ("xor", 0xB55A4F09, "right", 16, "xor"),
)


def _parse_bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean-like value.")


def _parse_int_env(name: str, default: int | None) -> int | None:
    value = os.environ.get(name)
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"", "none", "auto"}:
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer.") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive.")
    return parsed


def _mix(a, const, first_op, shift_dir, shift, second_op):
    lhs = a + const if first_op == "add" else a ^ const
    rhs = a << shift if shift_dir == "left" else a >> shift
    return lhs + rhs if second_op == "add" else lhs ^ rhs


def jenkins_hash(keys: chex.Array) -> chex.Array:
    """Robert Jenkins' 32-bit integer hash, element-wise on uint32 arrays.

    Works unchanged under ``jax.jit`` and inside Pallas kernels; all arithmetic
    wraps modulo 2**32.
    """
    a = jnp.asarray(keys, dtype=jnp.uint32)
    for first_op, const, shift_dir, shift, second_op in _JENKINS_ROUNDS:
        a = _mix(a, jnp.uint32(const), first_op, shift_dir, jnp.uint32(shift), second_op)
    return a


def jenkins_hash_host(keys) -> np.ndarray:
    """NumPy rendition of :func:`jenkins_hash`, bit-identical on the host."""
    a = np.asarray(keys, dtype=np.uint32)
    with np.errstate(over="ignore"):
        for first_op, const, shift_dir, shift, second_op in _JENKINS_ROUNDS:
            a = _mix(a, np.uint32(const), first_op, shift_dir, np.uint32(shift), second_op)
    return np.asarray(a, dtype=np.uint32)


def home_bucket(keys: chex.Array, capacity: int) -> chex.Array:
    """Bucket where the probe sequence for each key starts."""
    capacity_u32 = jnp.asarray(capacity, dtype=SIZE_DTYPE)
    return jnp.asarray(jenkins_hash(keys) % capacity_u32, dtype=SIZE_DTYPE)


def next_probe(index: chex.Array, capacity: int) -> chex.Array:
    """Linear probing step: the slot after ``index``, wrapping at ``capacity``."""
    index = jnp.asarray(index, dtype=SIZE_DTYPE)
    capacity_u32 = jnp.asarray(capacity, dtype=SIZE_DTYPE)
    nxt = index + SIZE_DTYPE(1)
    return jnp.where(nxt >= capacity_u32, SIZE_DTYPE(0), nxt)
