"""
Token id container - TokenArray.

A read-only ``Sequence[int]`` of unsigned 32-bit token ids with zero-copy
NumPy and DLPack support.

Memory Safety Contract:
- A TokenArray over foreign memory holds the strong handle that owns that
  memory; the memory stays valid for as long as the TokenArray is alive
- NumPy arrays obtained through ``np.asarray`` keep the TokenArray (and
  therefore the foreign buffer) alive through their ``base``
- After the owning handle is released explicitly (``Encoding.close()``),
  every access raises ``StateError`` instead of reading freed memory

Slicing:
- ``ids[a:b]`` returns a *copy* (new Python-owned TokenArray), not a view
"""

import ctypes
from collections.abc import Iterable, Iterator, Sequence
from typing import Any, overload

from ..exceptions import StateError
from ..memory import SharedHandle

__all__ = ["TokenArray"]


class TokenArray(Sequence[int]):
    """
    Sequence of token IDs with zero-copy NumPy and DLPack support.

    Returned as ``Encoding.ids`` (and the other per-token fields). The ids
    either alias an engine-owned foreign buffer or live in a Python-owned
    ctypes array. Implements ``collections.abc.Sequence[int]``.

    Key Features
    ------------

    **Zero-copy NumPy conversion**:

        >>> import numpy as np
        >>> ids = tokenizer.encode("Hello world").ids
        >>> arr = np.asarray(ids)  # Zero-copy view
        >>> arr.dtype
        dtype('uint32')

    **Standard sequence operations**:

        >>> len(ids)
        2
        >>> ids[-1]
        1879
        >>> ids.tolist()
        [9707, 1879]

    See Also
    --------
    Encoding : The result type that carries TokenArrays.
    Tokenizer.decode : Converts ids back to text.
    """

    __slots__ = ("_ptr", "_num_tokens", "_owner")

    def __init__(self, ptr: Any, num_tokens: int, *, _owner: SharedHandle | None = None) -> None:
        """
        Initialize from a ctypes ``uint32`` array.

        This is an internal constructor. Use ``TokenArray.from_address`` or
        ``TokenArray.from_list``.

        Args:
            ptr: ctypes ``c_uint32`` array holding at least ``num_tokens`` ids.
            num_tokens: Number of ids.
            _owner: Strong handle keeping foreign memory alive (None when the
                array owns its storage).
        """
        self._ptr = ptr
        self._num_tokens = num_tokens
        self._owner = _owner

    @classmethod
    def from_address(cls, address: int, num_tokens: int, owner: SharedHandle) -> "TokenArray":
        """Zero-copy view over ``num_tokens`` ids at ``address``, kept alive by ``owner``."""
        if not num_tokens:
            return cls((ctypes.c_uint32 * 0)(), 0, _owner=owner)
        return cls((ctypes.c_uint32 * num_tokens).from_address(address), num_tokens, _owner=owner)

    @classmethod
    def from_list(cls, token_ids: Iterable[int]) -> "TokenArray":
        """Python-owned copy of ``token_ids``."""
        values = list(token_ids)
        return cls((ctypes.c_uint32 * len(values))(*values), len(values))

    def _storage(self) -> Any:
        if self._ptr is None:
            raise StateError(
                "TokenArray has been closed",
                code="STATE_CLOSED",
            )
        if self._owner is not None and not self._owner.alive:
            raise StateError(
                "TokenArray's foreign buffer has been released",
                code="STATE_RELEASED",
                details={"address": self._owner.key},
            )
        return self._ptr

    @property
    def address(self) -> int:
        """Address of the first id."""
        return ctypes.addressof(self._storage())

    @property
    def owner(self) -> SharedHandle | None:
        """Strong handle backing this array (None if Python-owned)."""
        return self._owner

    def __len__(self) -> int:
        return self._num_tokens

    @overload
    def __getitem__(self, idx: int) -> int: ...

    @overload
    def __getitem__(self, idx: slice) -> "TokenArray": ...

    def __getitem__(self, idx: int | slice) -> "int | TokenArray":
        """
        Get a token ID by index or a slice of tokens.

        Supports negative indexing. Slices return a Python-owned copy.

        Raises
        ------
            IndexError: If index is out of range.
            StateError: If the backing buffer has been released.
        """
        ptr = self._storage()

        if isinstance(idx, slice):
            start, stop, step = idx.indices(self._num_tokens)
            return self.from_list(ptr[i] for i in range(start, stop, step))

        if idx < 0:
            idx = self._num_tokens + idx
        if idx < 0 or idx >= self._num_tokens:
            raise IndexError(f"Token index {idx} out of range [0, {self._num_tokens})")
        return ptr[idx]

    def __iter__(self) -> Iterator[int]:
        ptr = self._storage()
        for i in range(self._num_tokens):
            yield ptr[i]

    def tolist(self) -> list[int]:
        """
        Convert to a Python list.

        This copies the data. Use it to keep the ids after the backing
        buffer is released.
        """
        ptr = self._storage()
        return ptr[: self._num_tokens]

    def __contains__(self, value: object) -> bool:
        if not isinstance(value, int):
            return False
        return value in self.tolist()

    def index(self, value: int, start: int = 0, stop: int | None = None) -> int:
        """
        Return index of first occurrence of value.

        Raises
        ------
            ValueError: If value is not in the array.
        """
        if stop is None:
            stop = self._num_tokens
        try:
            return self.tolist().index(value, start, stop)
        except ValueError:
            raise ValueError(f"{value} is not in TokenArray") from None

    def count(self, value: int) -> int:
        """Return number of occurrences of value."""
        return self.tolist().count(value)

    def close(self) -> None:
        """
        Drop this array's reference to its storage.

        The foreign buffer itself is released when its last holder goes away.
        Safe to call multiple times.
        """
        self._ptr = None
        self._owner = None

    def __enter__(self) -> "TokenArray":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._ptr is None:
            return "TokenArray(<closed>)"
        if self._owner is not None and not self._owner.alive:
            return "TokenArray(<released>)"
        if self._num_tokens <= 10:
            tokens_str = str(self.tolist())
        else:
            first = [self._ptr[i] for i in range(5)]
            last = [self._ptr[i] for i in range(self._num_tokens - 3, self._num_tokens)]
            tokens_str = f"[{', '.join(map(str, first))}, ..., {', '.join(map(str, last))}]"
        return f"TokenArray({tokens_str}, len={self._num_tokens})"

    def __eq__(self, other: object) -> bool:
        """Compare with another TokenArray, a list or a tuple of ints."""
        if isinstance(other, TokenArray):
            return self.tolist() == other.tolist()
        if isinstance(other, (list, tuple)):
            return self.tolist() == list(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    # =========================================================================
    # NumPy / DLPack interop
    # =========================================================================

    @property
    def __array_interface__(self) -> dict:
        """
        NumPy array interface for zero-copy access.

        ``np.asarray(ids)`` aliases the same memory; the resulting array keeps
        this TokenArray alive through its ``base``.
        """
        return {
            "version": 3,
            "shape": (self._num_tokens,),
            "typestr": "<u4",
            "data": (self.address, False),
            "strides": None,
        }

    def __dlpack__(self, *, stream=None, **kwargs):
        """DLPack protocol - zero-copy 1-D uint32 export (CPU)."""
        import numpy as np

        return np.asarray(self).__dlpack__(stream=stream, **kwargs)

    def __dlpack_device__(self):
        """Return device tuple for DLPack protocol (CPU)."""
        return (1, 0)  # kDLCPU = 1, device_id = 0
