"""
SharedHandle ownership tests.

Verifies:
1. A SharedHandle releases its share exactly once (close, exit, or GC)
2. Parented handles never free and hold a share of their parent
3. Views over a released buffer raise StateError instead of reading freed memory
4. Real foreign blocks return to the allocator when the last view goes away
"""

import gc

import pytest

from polytok.exceptions import StateError, ValidationError
from polytok.memory import (
    ForeignBuffer,
    ForeignHandle,
    HandleKind,
    HandleRegistry,
    ParentedHandle,
    SharedHandle,
)


class Frees:
    def __init__(self):
        self.calls = []

    def __call__(self, buffer):
        self.calls.append(buffer.address)


@pytest.fixture
def registry():
    return HandleRegistry()


def owning(address, free, kind=HandleKind.OWNING_ENCODING):
    return ForeignHandle.owning(kind, ForeignBuffer(address, 4, 4), free)


class TestForeignHandle:
    """ForeignHandle factories."""

    def test_owning_rejects_parented_kind(self):
        with pytest.raises(ValidationError) as exc_info:
            ForeignHandle.owning(HandleKind.PARENTED, ForeignBuffer(0x10, 1), Frees())

        assert exc_info.value.code == "HANDLE_KIND_MISMATCH"

    def test_owning_requires_free_routine(self):
        with pytest.raises(ValidationError):
            ForeignHandle.owning(HandleKind.OWNING_STRING, ForeignBuffer(0x10, 1), None)

    def test_null_buffer_rejected(self):
        with pytest.raises(ValidationError):
            ForeignHandle.owning(HandleKind.OWNING_STRING, ForeignBuffer(0, 1), Frees())
        with pytest.raises(ValidationError):
            ForeignHandle.parented(ForeignBuffer(0, 1))

    def test_parented_release_is_noop(self):
        """A parented handle has nothing to free."""
        handle = ForeignHandle.parented(ForeignBuffer(0x10, 1))

        assert not handle.is_owning
        handle.release()

    def test_buffer_capacity_defaults_to_length(self):
        buffer = ForeignBuffer(0x10, 3, 4)

        assert buffer.capacity == 3
        assert buffer.nbytes == 12


class TestSharedHandle:
    """SharedHandle lifetime."""

    def test_close_releases_once(self, registry):
        """close() frees; later closes are no-ops."""
        frees = Frees()
        shared = SharedHandle(owning(0x100, frees), registry)

        assert shared.alive
        shared.close()
        shared.close()

        assert not shared.alive
        assert frees.calls == [0x100]
        assert 0x100 not in registry

    def test_context_manager_releases(self, registry):
        frees = Frees()
        with SharedHandle(owning(0x100, frees), registry) as shared:
            assert registry.share_count(shared.key) == 1

        assert frees.calls == [0x100]

    def test_gc_releases(self, registry):
        """Dropping the last reference releases through the finalizer."""
        frees = Frees()
        shared = SharedHandle(owning(0x100, frees), registry)
        del shared
        gc.collect()

        assert frees.calls == [0x100]
        assert len(registry) == 0

    def test_share_frees_after_last_holder(self, registry):
        """share() adds a holder; the free waits for both."""
        frees = Frees()
        first = SharedHandle(owning(0x100, frees), registry)
        second = first.share()

        assert registry.share_count(0x100) == 2
        first.close()
        assert frees.calls == []
        assert second.alive
        second.close()
        assert frees.calls == [0x100]

    def test_buffer_after_release_raises(self, registry):
        shared = SharedHandle(owning(0x100, Frees()), registry)
        shared.close()

        with pytest.raises(StateError) as exc_info:
            _ = shared.buffer

        assert exc_info.value.code == "STATE_RELEASED"
        with pytest.raises(StateError):
            shared.share()


class TestParentedHandle:
    """Children carved out of a parent allocation."""

    def test_child_never_frees(self, registry):
        """Closing a child leaves the parent's memory alone."""
        frees = Frees()
        parent = SharedHandle(owning(0x200, frees, HandleKind.OWNING_ENCODING_ARRAY), registry)
        child = parent.child(ForeignBuffer(0x280, 4, 4))

        assert isinstance(child, ParentedHandle)
        assert child.kind is HandleKind.PARENTED
        assert registry.kind_of(0x280) is HandleKind.PARENTED

        child.close()
        assert frees.calls == []
        parent.close()
        assert frees.calls == [0x200]

    def test_child_keeps_parent_alive(self, registry):
        """The parent is not collected while a child exists."""
        frees = Frees()
        parent = SharedHandle(owning(0x200, frees, HandleKind.OWNING_ENCODING_ARRAY), registry)
        child = parent.child(ForeignBuffer(0x280, 4, 4))
        del parent
        gc.collect()

        assert frees.calls == []
        assert child.alive

        del child
        gc.collect()
        assert frees.calls == [0x200]
        assert len(registry) == 0

    def test_child_survives_parent_close(self, registry):
        """Closing the parent drops only its own share; the child keeps the memory."""
        frees = Frees()
        parent = SharedHandle(owning(0x200, frees, HandleKind.OWNING_ENCODING_ARRAY), registry)
        child = parent.child(ForeignBuffer(0x280, 4, 4))
        assert registry.share_count(0x200) == 2

        parent.close()

        assert frees.calls == []
        assert child.alive
        assert registry.share_count(0x200) == 1
        assert registry.kind_of(0x280) is HandleKind.PARENTED

        child.close()
        assert frees.calls == [0x200]
        assert len(registry) == 0
        with pytest.raises(StateError):
            _ = child.buffer

    def test_siblings_free_once(self, registry):
        """Children released in any order free the parent exactly once, last."""
        frees = Frees()
        parent = SharedHandle(owning(0x200, frees, HandleKind.OWNING_ENCODING_ARRAY), registry)
        first = parent.child(ForeignBuffer(0x280, 4, 4))
        second = parent.child(ForeignBuffer(0x290, 4, 4))

        first.close()
        parent.close()
        assert frees.calls == []

        second.close()
        second.close()
        assert frees.calls == [0x200]


class TestForeignViews:
    """Views over real foreign blocks."""

    def test_token_array_view_released(self, foreign_memory):
        """A TokenArray over a closed handle raises rather than reading freed memory."""
        import ctypes

        from polytok.memory import get_allocator
        from polytok.tokenizer import TokenArray

        allocator = get_allocator()
        address = allocator.alloc(3 * 4)
        (ctypes.c_uint32 * 3).from_address(address)[:] = [7, 8, 9]
        owner = SharedHandle(
            ForeignHandle.owning(
                HandleKind.OWNING_ENCODING,
                ForeignBuffer(address, 3, 4),
                lambda buffer: allocator.free(buffer.address),
            )
        )
        ids = TokenArray.from_address(address, 3, owner)

        assert ids.tolist() == [7, 8, 9]
        owner.close()
        with pytest.raises(StateError) as exc_info:
            ids.tolist()
        assert exc_info.value.code == "STATE_RELEASED"

        del ids, owner
        foreign_memory.assert_clean("after closing a TokenArray owner")

    def test_decoding_view_outlives_local_owner(self, foreign_memory):
        """A Decoding keeps its block alive after the creator drops its reference."""
        from polytok.memory import get_allocator
        from polytok.tokenizer import Decoding

        allocator = get_allocator()
        address = allocator.alloc_copy(b"hello")
        owner = SharedHandle(
            ForeignHandle.owning(
                HandleKind.OWNING_STRING,
                ForeignBuffer(address, 5),
                lambda buffer: allocator.free(buffer.address),
            )
        )
        text = Decoding.from_address(address, 5, owner)
        del owner
        gc.collect()

        assert allocator.owns(address)
        assert text == "hello"
        assert text.is_view

        del text
        foreign_memory.assert_clean("after dropping a Decoding")
