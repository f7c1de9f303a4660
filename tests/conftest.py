"""
Global pytest fixtures for polytok tests.

This module provides:
- Fault handling for native crashes
- Foreign-memory accounting (registry records, live allocations)
"""

import faulthandler
import gc

import pytest

# Enable faulthandler to trace native crashes (segfaults)
faulthandler.enable()


def collect() -> None:
    """Run every pending finalizer."""
    gc.collect()
    gc.collect()
    gc.collect()


@pytest.fixture
def polytok():
    """The polytok package."""
    import polytok

    return polytok


@pytest.fixture
def foreign_memory():
    """Snapshot registry records and live allocations; check both after a test.

    Tests that hold results across the yield must drop them before returning.
    """
    from polytok.memory import get_allocator, get_registry

    class ForeignMemoryTracker:
        def __init__(self):
            collect()
            self.registry = get_registry()
            self.allocator = get_allocator()
            self.baseline_keys = set(self.registry.keys())
            self.baseline_live = self.allocator.live_allocations

        def new_keys(self) -> set[int]:
            return set(self.registry.keys()) - self.baseline_keys

        def assert_clean(self, context: str = "") -> None:
            """Assert no registry record or allocation outlived the test body."""
            collect()
            leaked = self.new_keys()
            assert not leaked, f"{len(leaked)} registry records leaked {context}".strip()
            live = self.allocator.live_allocations
            assert live == self.baseline_live, (
                f"live allocations {self.baseline_live} -> {live} {context}".strip()
            )

    return ForeignMemoryTracker()
