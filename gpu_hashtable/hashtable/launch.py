"""Launch-shape estimation for one-worker-per-item kernels."""
from __future__ import annotations

from typing import NamedTuple

import jax

from .hash_utils import _parse_int_env

# CUDA and ROCm cap a thread block at 1024 threads; XLA:CPU has no such limit,
# so a modest lane count keeps padded batches small there.
_PLATFORM_MAX_THREADS = {
    "gpu": 1024,
    "cuda": 1024,
    "rocm": 1024,
    "tpu": 1024,
    "cpu": 128,
}
_FALLBACK_MAX_THREADS = 128


class LaunchShape(NamedTuple):
    groups: int
    threads_per_group: int

    @property
    def total(self) -> int:
        """Number of lanes in the launch, including padding."""
        return self.groups * self.threads_per_group


def max_threads_per_group(device: jax.Device | None = None) -> int:
    """Maximum threads per group for ``device`` (default: first local device)."""
    override = _parse_int_env("GPU_HASHTABLE_THREADS_PER_GROUP", None)
    if override is not None:
        return override
    if device is None:
        device = jax.local_devices()[0]
    return _PLATFORM_MAX_THREADS.get(device.platform, _FALLBACK_MAX_THREADS)


def estimate_launch_shape(item_count: int, device: jax.Device | None = None) -> LaunchShape:
    """
    Map a work-item count to ``(groups, threads_per_group)``.

    ``threads_per_group`` is the device maximum and ``groups`` is the smallest
    count that covers ``item_count``. Zero items yield zero groups.
    """
    item_count = int(item_count)
    if item_count < 0:
        raise ValueError("item_count must be non-negative.")
    threads = max_threads_per_group(device)
    groups = -(-item_count // threads)
    return LaunchShape(groups=groups, threads_per_group=threads)
