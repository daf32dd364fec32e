from .allocator import AllocationError, BudgetAllocator, DeviceAllocator

__all__ = [
    "AllocationError",
    "BudgetAllocator",
    "DeviceAllocator",
]
