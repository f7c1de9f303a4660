"""
Strong references into the handle registry.

``SharedHandle`` registers a handle when created and releases it exactly once:
on ``close()``, on context-manager exit, or when the object is garbage
collected, whichever happens first. Result views hold a ``SharedHandle``, so a
foreign buffer stays alive for as long as any view over it does.

``ParentedHandle`` is the strong reference for a sub-range of a parent
allocation (one encoding inside a batch). It registers a ``PARENTED`` handle,
which can never free memory, and takes a share of its parent's record; the
real free happens when the last child and the parent itself are released.
"""

import weakref
from typing import Any

from ..exceptions import StateError
from .buffer import ForeignBuffer, ForeignHandle, HandleKind
from .registry import HandleRegistry, get_registry

__all__ = ["SharedHandle", "ParentedHandle"]


class SharedHandle:
    """
    Strong, self-releasing reference to a registered foreign handle.

    Parameters
    ----------
    handle : ForeignHandle
        The handle to register.
    registry : HandleRegistry, optional
        Registry to use. Defaults to the process-wide registry.
    """

    __slots__ = ("_handle", "_key", "_registry", "_finalizer", "__weakref__")

    def __init__(self, handle: ForeignHandle, registry: HandleRegistry | None = None) -> None:
        registry = registry if registry is not None else get_registry()
        self._key = registry.register(handle)
        self._handle = handle
        self._registry = registry
        # The callback must not reference self or the handle would never die.
        self._finalizer = weakref.finalize(self, registry.release, self._key)

    @property
    def key(self) -> int:
        return self._key

    @property
    def address(self) -> int:
        return self._handle.address

    @property
    def kind(self) -> HandleKind:
        return self._handle.kind

    @property
    def buffer(self) -> ForeignBuffer:
        """The registered buffer. Raises ``StateError`` once released."""
        if not self.alive:
            raise StateError(
                "Foreign buffer has been released",
                code="STATE_RELEASED",
                details={"address": self._key},
            )
        return self._handle.buffer

    @property
    def registry(self) -> HandleRegistry:
        return self._registry

    @property
    def alive(self) -> bool:
        return self._finalizer.alive

    def share(self) -> "SharedHandle":
        """Register another share of the same handle and return its owner."""
        if not self.alive:
            raise StateError("Cannot share a released handle", code="STATE_RELEASED")
        return SharedHandle(self._handle, self._registry)

    def child(self, buffer: ForeignBuffer) -> "ParentedHandle":
        """Borrow ``buffer`` (a sub-range of this allocation) as a parented handle."""
        if not self.alive:
            raise StateError("Cannot borrow from a released handle", code="STATE_RELEASED")
        return ParentedHandle(buffer, self)

    def close(self) -> None:
        """Release this reference now. Further calls are no-ops."""
        self._finalizer()

    def __enter__(self) -> "SharedHandle":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "alive" if self.alive else "released"
        return f"{type(self).__name__}({self.kind.name}, address={self._key:#x}, {state})"


def _release_child(registry: HandleRegistry, key: int, parent_share: SharedHandle) -> None:
    try:
        registry.release(key)
    finally:
        parent_share.close()


class ParentedHandle(SharedHandle):
    """
    Strong reference to a sub-range of a parent allocation.

    Never frees memory itself. Holds its own registry share of the parent, so
    the parent allocation is freed only after this handle and every other
    share of the parent are released, even if the parent ``SharedHandle`` was
    closed first.
    """

    __slots__ = ("_parent",)

    def __init__(
        self,
        buffer: ForeignBuffer,
        parent: SharedHandle,
        registry: HandleRegistry | None = None,
    ) -> None:
        if registry is None:
            registry = parent.registry
        parent_share = parent.share()
        try:
            super().__init__(ForeignHandle.parented(buffer), registry)
        except BaseException:
            parent_share.close()
            raise
        self._finalizer.detach()
        self._finalizer = weakref.finalize(self, _release_child, registry, self._key, parent_share)
        self._parent = parent

    @property
    def parent(self) -> SharedHandle:
        return self._parent
