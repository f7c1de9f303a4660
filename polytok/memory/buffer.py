"""
Foreign buffers and the handles that own (or borrow) them.

A ``ForeignBuffer`` is a plain value: where a foreign allocation starts and
how big it is. A ``ForeignHandle`` attaches an ownership kind and, for owning
kinds only, the routine that frees the allocation. Parented handles are built
without a free routine, so they have nothing to call when released.
"""

import ctypes
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..exceptions import ValidationError

__all__ = ["ForeignBuffer", "HandleKind", "ForeignHandle", "FreeRoutine"]


@dataclass(frozen=True)
class ForeignBuffer:
    """
    Address, element count, element size and capacity of a foreign block.

    Identity is the address. ``capacity`` defaults to ``length``.
    """

    address: int
    length: int
    element_size: int = 1
    capacity: int | None = None

    def __post_init__(self) -> None:
        if self.length < 0 or self.element_size <= 0:
            raise ValidationError(
                "ForeignBuffer needs length >= 0 and element_size > 0",
                details={"length": self.length, "element_size": self.element_size},
            )
        if self.capacity is None:
            object.__setattr__(self, "capacity", self.length)

    @property
    def nbytes(self) -> int:
        return self.length * self.element_size

    def tobytes(self) -> bytes:
        """Copy the block's contents into a Python ``bytes``."""
        if not self.address or not self.nbytes:
            return b""
        return ctypes.string_at(self.address, self.nbytes)

    def view(self) -> memoryview:
        """Zero-copy, read-only byte view of the block."""
        if not self.address or not self.nbytes:
            return memoryview(b"")
        raw = (ctypes.c_ubyte * self.nbytes).from_address(self.address)
        return memoryview(raw).cast("B").toreadonly()

    def __repr__(self) -> str:
        return (
            f"ForeignBuffer(address={self.address:#x}, length={self.length}, "
            f"element_size={self.element_size}, capacity={self.capacity})"
        )


class HandleKind(Enum):
    """Closed set of handle kinds tracked by the registry."""

    OWNING_STRING = "owning_string"
    OWNING_ENCODING = "owning_encoding"
    OWNING_ENCODING_ARRAY = "owning_encoding_array"
    OWNING_TOKENIZER = "owning_tokenizer"
    PARENTED = "parented"

    @property
    def is_owning(self) -> bool:
        return self is not HandleKind.PARENTED


FreeRoutine = Callable[[ForeignBuffer], None]


class ForeignHandle:
    """
    A foreign buffer tagged with its ownership kind.

    Use ``ForeignHandle.owning(...)`` or ``ForeignHandle.parented(...)``; the
    constructor is internal.
    """

    __slots__ = ("kind", "buffer", "_free")

    def __init__(self, kind: HandleKind, buffer: ForeignBuffer, free: FreeRoutine | None) -> None:
        self.kind = kind
        self.buffer = buffer
        self._free = free

    @classmethod
    def owning(cls, kind: HandleKind, buffer: ForeignBuffer, free: FreeRoutine) -> "ForeignHandle":
        """
        Build a handle whose release frees ``buffer`` through ``free``.

        Raises
        ------
        ValidationError
            If ``kind`` is ``PARENTED``, ``free`` is not callable, or the
            buffer address is null.
        """
        if not kind.is_owning:
            raise ValidationError(
                "Owning handle needs an owning kind; use ForeignHandle.parented()",
                code="HANDLE_KIND_MISMATCH",
                details={"kind": kind.name},
            )
        if not callable(free):
            raise ValidationError(
                "Owning handle needs a callable free routine",
                details={"kind": kind.name},
            )
        if not buffer.address:
            raise ValidationError("Cannot own a null buffer", details={"kind": kind.name})
        return cls(kind, buffer, free)

    @classmethod
    def parented(cls, buffer: ForeignBuffer) -> "ForeignHandle":
        """Build a handle borrowing ``buffer`` from a parent allocation."""
        if not buffer.address:
            raise ValidationError("Cannot borrow a null buffer", details={"kind": "PARENTED"})
        return cls(HandleKind.PARENTED, buffer, None)

    @property
    def address(self) -> int:
        return self.buffer.address

    @property
    def is_owning(self) -> bool:
        return self.kind.is_owning

    def release(self) -> None:
        """Run the free routine (owning) or do nothing (parented)."""
        if self._free is not None:
            self._free(self.buffer)

    def __repr__(self) -> str:
        return f"ForeignHandle({self.kind.name}, address={self.address:#x})"
