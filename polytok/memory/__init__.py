"""
Foreign memory ownership.

- ``ForeignAllocator`` hands out C-runtime blocks and refuses invalid frees.
- ``ForeignBuffer`` / ``ForeignHandle`` describe a block and who may free it.
- ``HandleRegistry`` shares one owner record per address across all views.
- ``SharedHandle`` / ``ParentedHandle`` are the strong references results hold.
"""

from .allocator import ForeignAllocator, get_allocator
from .buffer import ForeignBuffer, ForeignHandle, FreeRoutine, HandleKind
from .registry import HandleRegistry, get_registry
from .shared import ParentedHandle, SharedHandle

__all__ = [
    "ForeignAllocator",
    "get_allocator",
    "ForeignBuffer",
    "ForeignHandle",
    "FreeRoutine",
    "HandleKind",
    "HandleRegistry",
    "get_registry",
    "SharedHandle",
    "ParentedHandle",
]
