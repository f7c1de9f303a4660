"""
Process-wide registry of foreign handles.

Maps a foreign address to one reference-counted owner record. Registering an
address that is already known increments its share count; releasing
decrements it, and the owner's free routine runs exactly once when the count
reaches zero. A single lock serializes every read and mutation of the map.

The registry is created lazily by ``get_registry()`` and lives for the rest of
the process.
"""

import threading
from dataclasses import dataclass

from .._logging import scoped_logger
from ..exceptions import ForeignCallError, ValidationError
from .buffer import ForeignHandle, HandleKind

__all__ = ["HandleRegistry", "get_registry"]

logger = scoped_logger("memory")


@dataclass
class _OwnerRecord:
    payload: ForeignHandle
    kind: HandleKind
    share_count: int = 1


class HandleRegistry:
    """
    Reference-counted map from foreign address to owner record.

    Example
    -------
    >>> registry = HandleRegistry()
    >>> key = registry.register(handle)
    >>> registry.register(handle) == key
    True
    >>> registry.share_count(key)
    2
    >>> registry.release(key), registry.release(key), registry.release(key)
    (True, True, False)
    """

    __slots__ = ("_records", "_lock")

    def __init__(self) -> None:
        self._records: dict[int, _OwnerRecord] = {}
        self._lock = threading.Lock()

    def register(self, handle: ForeignHandle) -> int:
        """
        Register ``handle`` and return its key (the foreign address).

        Raises
        ------
        ValidationError
            If the address is already registered under a different kind.
            The registry is left unchanged.
        """
        key = handle.address
        with self._lock:
            record = self._records.get(key)
            if record is None:
                self._records[key] = _OwnerRecord(payload=handle, kind=handle.kind)
                count = 1
            elif record.kind is not handle.kind:
                raise ValidationError(
                    f"Address {key:#x} is registered as {record.kind.name}, "
                    f"not {handle.kind.name}",
                    code="HANDLE_KIND_MISMATCH",
                    details={"address": key, "registered": record.kind.name, "requested": handle.kind.name},
                )
            else:
                record.share_count += 1
                count = record.share_count
        logger.debug(
            "Registered handle",
            extra={"address": hex(key), "kind": handle.kind.name, "share_count": count},
        )
        return key

    def release(self, key: int) -> bool:
        """
        Drop one share of ``key``.

        Returns ``False`` if the key is unknown. When the last share is
        dropped the record is erased first and the free routine runs after,
        outside the lock.

        Raises
        ------
        ForeignCallError
            If the free routine fails. The record is already gone, so the
            free is never retried.
        """
        to_free = None
        with self._lock:
            record = self._records.get(key)
            if record is None:
                found = False
            else:
                found = True
                record.share_count -= 1
                if record.share_count == 0:
                    del self._records[key]
                    to_free = record.payload

        if not found:
            logger.warning("Release of unknown handle", extra={"address": hex(key)})
            return False

        if to_free is not None:
            try:
                to_free.release()
            except Exception as exc:
                logger.error(
                    "Free routine failed",
                    extra={"address": hex(key), "kind": to_free.kind.name},
                    exc_info=True,
                )
                raise ForeignCallError(
                    f"Free routine for {key:#x} failed: {exc}",
                    code="FREE_FAILED",
                    details={"address": key, "kind": to_free.kind.name},
                ) from exc
            logger.debug("Freed handle", extra={"address": hex(key), "kind": to_free.kind.name})
        return True

    def peek(self, key: int) -> ForeignHandle | None:
        """Return the payload registered under ``key`` without changing its count."""
        with self._lock:
            record = self._records.get(key)
            return record.payload if record is not None else None

    def share_count(self, key: int) -> int:
        """Current share count of ``key`` (0 if unknown)."""
        with self._lock:
            record = self._records.get(key)
            return record.share_count if record is not None else 0

    def kind_of(self, key: int) -> HandleKind | None:
        with self._lock:
            record = self._records.get(key)
            return record.kind if record is not None else None

    def keys(self) -> list[int]:
        """Snapshot of the registered keys."""
        with self._lock:
            return list(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __repr__(self) -> str:
        return f"HandleRegistry(records={len(self)})"


_registry: HandleRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> HandleRegistry:
    """Return the process-wide registry, creating it on first use."""
    global _registry
    registry = _registry
    if registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = HandleRegistry()
                logger.debug("Handle registry initialized")
            registry = _registry
    return registry
