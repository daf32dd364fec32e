import jax
import pytest

from gpu_hashtable import LaunchShape, estimate_launch_shape
from gpu_hashtable.hashtable import max_threads_per_group


@pytest.fixture(autouse=True)
def _no_override(monkeypatch):
    monkeypatch.delenv("GPU_HASHTABLE_THREADS_PER_GROUP", raising=False)


def test_cpu_device_threads():
    device = jax.devices("cpu")[0]
    assert max_threads_per_group(device) == 128


@pytest.mark.parametrize(
    "item_count, expected_groups",
    [(0, 0), (1, 1), (127, 1), (128, 1), (129, 2), (1000, 8), (1024, 8)],
)
def test_groups_cover_item_count(item_count, expected_groups):
    device = jax.devices("cpu")[0]
    shape = estimate_launch_shape(item_count, device)
    assert shape == LaunchShape(groups=expected_groups, threads_per_group=128)
    assert shape.total >= item_count
    # One group fewer would not cover every item.
    assert (shape.groups - 1) * shape.threads_per_group < max(item_count, 1)


def test_env_override(monkeypatch):
    monkeypatch.setenv("GPU_HASHTABLE_THREADS_PER_GROUP", "64")
    shape = estimate_launch_shape(130)
    assert shape.threads_per_group == 64
    assert shape.groups == 3
    assert shape.total == 192


def test_default_device_used():
    shape = estimate_launch_shape(10)
    assert shape.threads_per_group == max_threads_per_group(jax.local_devices()[0])


def test_negative_item_count_rejected():
    with pytest.raises(ValueError):
        estimate_launch_shape(-1)
