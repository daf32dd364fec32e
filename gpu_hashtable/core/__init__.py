from .dataclass import base_dataclass

__all__ = [
    "base_dataclass",
]
