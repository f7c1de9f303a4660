"""
Decoded text view.

A ``Decoding`` is UTF-8 bytes plus whatever keeps them alive: a strong handle
on a foreign string (zero-copy), or nothing at all for Python-owned bytes such
as a freshly joined string or a slice of a tokenizer's own vocabulary storage.
"""

from typing import Any

from ..exceptions import StateError
from ..memory import ForeignBuffer, SharedHandle

__all__ = ["Decoding"]


class Decoding:
    """
    Text result of ``decode``, ``decode_batch`` and ``id_to_token``.

    Compares equal to ``str`` and ``bytes``; ``str(decoding)`` gives the text.
    Bytes that are not valid UTF-8 (a byte-level token cut mid-character) are
    shown with replacement characters by ``text``; ``tobytes()`` is exact.

    Example
    -------
    >>> text = tokenizer.decode([9707, 1879])
    >>> text == "Hello world"
    True
    >>> bytes(text)
    b'Hello world'
    """

    __slots__ = ("_data", "_owner")

    def __init__(self, data: bytes | memoryview, owner: SharedHandle | None = None) -> None:
        self._data = data
        self._owner = owner

    @classmethod
    def from_address(cls, address: int, length: int, owner: SharedHandle) -> "Decoding":
        """Zero-copy view over ``length`` bytes at ``address``, kept alive by ``owner``."""
        return cls(ForeignBuffer(address, length).view(), owner)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Decoding":
        return cls(bytes(data))

    @classmethod
    def empty(cls) -> "Decoding":
        return cls(b"")

    @property
    def owner(self) -> SharedHandle | None:
        """Strong handle keeping the bytes alive (None if Python-owned)."""
        return self._owner

    @property
    def is_view(self) -> bool:
        """True if the bytes alias foreign memory."""
        return self._owner is not None

    @property
    def view(self) -> memoryview:
        """Read-only byte view without copying."""
        if self._owner is not None and not self._owner.alive:
            raise StateError(
                "Decoding's foreign buffer has been released",
                code="STATE_RELEASED",
                details={"address": self._owner.key},
            )
        return memoryview(self._data)

    def tobytes(self) -> bytes:
        return self.view.tobytes()

    @property
    def text(self) -> str:
        return self.tobytes().decode("utf-8", errors="replace")

    def close(self) -> None:
        """Drop this view's reference to its storage."""
        self._data = b""
        self._owner = None

    def __enter__(self) -> "Decoding":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __str__(self) -> str:
        return self.text

    def __bytes__(self) -> bytes:
        return self.tobytes()

    def __len__(self) -> int:
        """Length in bytes."""
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Decoding):
            return self.tobytes() == other.tobytes()
        if isinstance(other, str):
            return self.tobytes() == other.encode("utf-8")
        if isinstance(other, (bytes, bytearray, memoryview)):
            return self.tobytes() == bytes(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.text)

    def __repr__(self) -> str:
        return f"Decoding({self.text!r})"
