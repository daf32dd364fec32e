import jax
import numpy as np
import pytest

from gpu_hashtable import AllocationError, BudgetAllocator, DeviceAllocator, GpuHashTable
from gpu_hashtable.hashtable import hashtable as hashtable_module


def test_byte_accounting_by_kind():
    alloc = DeviceAllocator()
    shared = alloc.allocate_shared((10,), np.uint32, 7)
    staged = alloc.copy(np.arange(4, dtype=np.uint32))

    assert alloc.bytes_in_use_by_kind("shared") == 40
    assert alloc.bytes_in_use_by_kind("exclusive") == 16
    assert alloc.bytes_in_use == 56
    np.testing.assert_array_equal(alloc.to_host(shared), np.full((10,), 7, np.uint32))

    alloc.free(staged)
    assert staged.is_deleted()
    alloc.free(shared, kind="shared")
    assert alloc.bytes_in_use == 0


def test_staged_buffers_freed_on_error():
    alloc = DeviceAllocator()
    seen = []
    with pytest.raises(RuntimeError):
        with alloc.staged(np.arange(8, dtype=np.uint32), np.ones((8,), np.bool_)) as arrays:
            seen.extend(arrays)
            assert alloc.bytes_in_use == 40
            raise RuntimeError("kernel failed")
    assert alloc.bytes_in_use == 0
    assert all(a.is_deleted() for a in seen)


def test_budget_allocator_refuses_overflow():
    alloc = BudgetAllocator(96)
    alloc.allocate_shared((10,), np.uint32)
    alloc.allocate_shared((10,), np.uint32)
    alloc.copy(np.zeros((2,), np.uint32))
    assert alloc.bytes_in_use == 88

    with pytest.raises(AllocationError):
        alloc.allocate_exclusive((4,), np.uint32)
    assert alloc.bytes_in_use == 88
    assert alloc.peak_bytes == 88

    with pytest.raises(ValueError):
        BudgetAllocator(-1)


def test_table_storage_is_tracked():
    alloc = DeviceAllocator()
    table = GpuHashTable(8, allocator=alloc, fatal_errors=False)
    assert alloc.bytes_in_use_by_kind("shared") == 8 * 8

    table.insert_batch([1, 2, 3], [4, 5, 6])
    assert alloc.bytes_in_use_by_kind("exclusive") == 0

    table.reshape(100)
    assert alloc.bytes_in_use == 100 * 8

    table.close()
    assert alloc.bytes_in_use == 0


def test_failed_growth_leaves_table_usable(monkeypatch):
    monkeypatch.setenv("GPU_HASHTABLE_THREADS_PER_GROUP", "4")
    alloc = BudgetAllocator(160)
    table = GpuHashTable(10, allocator=alloc, fatal_errors=False)
    assert alloc.bytes_in_use == 80

    # Nine keys need an 18-slot table, which does not fit in the budget.
    with pytest.raises(AllocationError):
        table.insert_batch(np.arange(1, 10), np.arange(1, 10))
    assert table.capacity == 10
    assert table.used == 0
    assert alloc.bytes_in_use == 80

    table.insert_batch([1, 2], [10, 20])
    np.testing.assert_array_equal(table.get_batch([1, 2]), [10, 20])
    assert alloc.bytes_in_use == 80
    table.close()


def test_failed_rehash_releases_new_store(monkeypatch):
    monkeypatch.setenv("GPU_HASHTABLE_THREADS_PER_GROUP", "4")
    rehash = hashtable_module._store_rehash_jit

    def failing_rehash(*args, **kwargs):
        raise jax.errors.JaxRuntimeError("rehash kernel failed")

    alloc = BudgetAllocator(640)
    table = GpuHashTable(8, allocator=alloc, fatal_errors=False)
    table.insert_batch([1, 2], [10, 20])
    assert alloc.bytes_in_use == 64

    monkeypatch.setattr(hashtable_module, "_store_rehash_jit", failing_rehash)
    with pytest.raises(jax.errors.JaxRuntimeError):
        table.reshape(64)
    assert alloc.bytes_in_use == 64
    assert table.capacity == 8
    monkeypatch.setattr(hashtable_module, "_store_rehash_jit", rehash)

    # The budget is intact, so a later growth still fits.
    table.reshape(64)
    assert alloc.bytes_in_use == 64 * 8
    np.testing.assert_array_equal(table.get_batch([1, 2]), [10, 20])
    table.close()


def test_recoverable_mode_from_environment(monkeypatch):
    monkeypatch.setenv("GPU_HASHTABLE_FATAL_ERRORS", "0")
    alloc = BudgetAllocator(40)
    with pytest.raises(AllocationError):
        GpuHashTable(10, allocator=alloc)
    # The key array allocated before the failure is returned.
    assert alloc.bytes_in_use == 0


def test_fatal_mode_exits():
    with pytest.raises(SystemExit) as excinfo:
        GpuHashTable(1024, allocator=BudgetAllocator(16), fatal_errors=True)
    assert excinfo.value.code == 1
