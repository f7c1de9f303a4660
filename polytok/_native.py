"""
Foreign memory primitives shared by the engine and the memory layer.

Loads the C runtime through ctypes and declares the C-compatible structures
and callback signatures used at the engine boundary:

- ``ArrayHandle``: borrowed ``(ptr, len)`` view into engine-owned memory
- ``ExportVec``: an owned vector ``(ptr, capacity, len, type_size)`` handed
  to the caller, who must give it back to the matching free function
- ``CustomAllocator`` / ``EmplaceBack``: the caller-provided allocation
  handshake the engine uses to deliver variable-length outputs
- ``ConvertArrayOffset``: the caller-provided accessor the engine uses to read
  the i-th element of an opaque input array
"""

import ctypes
import ctypes.util
import sys

__all__ = [
    "ArrayHandle",
    "ExportVec",
    "CustomAllocator",
    "EmplaceBack",
    "ConvertArrayOffset",
    "NOT_FOUND",
    "UINT32_MAX",
    "libc",
]

UINT32_MAX = 0xFFFFFFFF

# Sentinel returned by token_to_id on every backend (all ones, 32 bits)
NOT_FOUND = UINT32_MAX


def _load_libc() -> ctypes.CDLL:
    """Load the platform C runtime and declare malloc/free signatures."""
    if sys.platform == "win32":
        lib = ctypes.cdll.msvcrt
    else:
        # find_library may return None in minimal images; CDLL(None) then
        # resolves symbols from the running process, which links libc.
        lib = ctypes.CDLL(ctypes.util.find_library("c"))

    lib.malloc.argtypes = [ctypes.c_size_t]
    lib.malloc.restype = ctypes.c_void_p
    lib.free.argtypes = [ctypes.c_void_p]
    lib.free.restype = None
    return lib


libc = _load_libc()


class ArrayHandle(ctypes.Structure):
    """Borrowed view into engine memory: ``ptr`` plus element count."""

    _fields_ = [
        ("ptr", ctypes.c_void_p),
        ("len", ctypes.c_size_t),
    ]

    def __repr__(self) -> str:
        return f"ArrayHandle(ptr={self.ptr:#x}, len={self.len})" if self.ptr else "ArrayHandle(NULL)"


class ExportVec(ctypes.Structure):
    """Owned vector exported by the engine."""

    _fields_ = [
        ("ptr", ctypes.c_void_p),
        ("capacity", ctypes.c_size_t),
        ("len", ctypes.c_size_t),
        ("type_size", ctypes.c_size_t),
    ]

    def __repr__(self) -> str:
        if not self.ptr:
            return "ExportVec(NULL)"
        return (
            f"ExportVec(ptr={self.ptr:#x}, len={self.len}, "
            f"capacity={self.capacity}, type_size={self.type_size})"
        )


# void* allocator(size_t len, void* args)
CustomAllocator = ctypes.CFUNCTYPE(ctypes.c_void_p, ctypes.c_size_t, ctypes.c_void_p)

# void emplace_back(void* args, const void* data, size_t len)
EmplaceBack = ctypes.CFUNCTYPE(None, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_size_t)

# void convert(const void* base, size_t index, ArrayHandle* out)
# Callbacks cannot return structures through ctypes, so the result is
# written through an out-pointer.
ConvertArrayOffset = ctypes.CFUNCTYPE(
    None, ctypes.c_void_p, ctypes.c_size_t, ctypes.POINTER(ArrayHandle)
)
