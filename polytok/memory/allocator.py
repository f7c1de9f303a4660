"""
Foreign allocator.

All engine results live in memory obtained from the C runtime's ``malloc``,
not from Python's allocator. ``ForeignAllocator`` keeps the set of live
addresses so that a free of an address it never handed out (or already freed)
is reported as an error instead of corrupting the heap.
"""

import ctypes
import threading

from .._logging import scoped_logger
from .._native import libc
from ..exceptions import ForeignCallError, ValidationError

__all__ = ["ForeignAllocator", "get_allocator"]

logger = scoped_logger("memory")


class ForeignAllocator:
    """
    Thin accounting wrapper over ``malloc``/``free``.

    Attributes
    ----------
    live_allocations : int
        Number of blocks currently allocated and not yet freed.
    """

    __slots__ = ("_malloc", "_free", "_live", "_lock")

    def __init__(self, lib: ctypes.CDLL = libc) -> None:
        self._malloc = lib.malloc
        self._free = lib.free
        self._live: set[int] = set()
        self._lock = threading.Lock()

    def alloc(self, nbytes: int) -> int:
        """
        Allocate ``nbytes`` (at least one byte) and return the address.

        Raises
        ------
        ValidationError
            If ``nbytes`` is negative.
        MemoryError
            If the C runtime is out of memory.
        """
        if nbytes < 0:
            raise ValidationError(
                f"Cannot allocate {nbytes} bytes",
                details={"param": "nbytes", "value": nbytes},
            )
        address = self._malloc(max(nbytes, 1))
        if not address:
            raise MemoryError(f"malloc({nbytes}) failed")
        with self._lock:
            self._live.add(address)
        return address

    def alloc_copy(self, data: bytes) -> int:
        """Allocate a block holding a copy of ``data``."""
        address = self.alloc(len(data))
        if data:
            ctypes.memmove(address, data, len(data))
        return address

    def free(self, address: int) -> None:
        """
        Return a block to the C runtime.

        Raises
        ------
        ForeignCallError
            If ``address`` is not a live allocation (double free or a
            foreign pointer).
        """
        with self._lock:
            if address not in self._live:
                raise ForeignCallError(
                    f"Invalid free of {address:#x}: not a live allocation",
                    code="INVALID_FREE",
                    details={"address": address},
                )
            self._live.discard(address)
        self._free(address)

    def owns(self, address: int) -> bool:
        with self._lock:
            return address in self._live

    @property
    def live_allocations(self) -> int:
        with self._lock:
            return len(self._live)

    def __repr__(self) -> str:
        return f"ForeignAllocator(live={self.live_allocations})"


_allocator: ForeignAllocator | None = None
_allocator_lock = threading.Lock()


def get_allocator() -> ForeignAllocator:
    """Return the process-wide allocator, creating it on first use."""
    global _allocator
    allocator = _allocator
    if allocator is None:
        with _allocator_lock:
            if _allocator is None:
                _allocator = ForeignAllocator()
                logger.debug("Foreign allocator initialized")
            allocator = _allocator
    return allocator
