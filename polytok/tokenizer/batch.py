"""
Batch tokenization container.

Holds the per-text ``Encoding`` results of a batch, in input order, and
lazily materializes a padded rectangular block for tensor consumers.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, MutableSequence, Sequence
from dataclasses import dataclass
from typing import Any, overload

import numpy as np

from ..config import PaddingSide
from ..exceptions import InteropError, ValidationError
from ..memory import SharedHandle
from .encoding import Encoding

__all__ = ["BatchEncoding", "PaddedBatch", "pad_encodings"]

_KEYS = ("input_ids", "attention_mask", "token_type_ids")


def _check_padding_side(value: str) -> None:
    if value not in ("left", "right"):
        raise ValidationError(
            f"padding_side must be 'left' or 'right', got {value!r}.",
            code="INVALID_ARGUMENT",
            details={"param": "padding_side", "value": value, "allowed": ["left", "right"]},
        )


@dataclass(frozen=True)
class PaddedBatch:
    """
    Rectangular ``uint32`` block derived from a batch.

    ``input_ids`` and ``attention_mask`` have shape ``(batch_size, width)``.
    ``token_type_ids`` has the same shape, or is None when no row carries
    type ids.
    """

    input_ids: np.ndarray
    attention_mask: np.ndarray
    token_type_ids: np.ndarray | None
    padding_side: str
    pad_token_id: int

    @property
    def shape(self) -> tuple[int, int]:
        return self.input_ids.shape

    def as_dict(self) -> dict[str, np.ndarray]:
        out = {"input_ids": self.input_ids, "attention_mask": self.attention_mask}
        if self.token_type_ids is not None:
            out["token_type_ids"] = self.token_type_ids
        return out


def _row_width(encoding: Encoding) -> int:
    widths = [len(encoding.ids)]
    for field in (encoding.type_ids, encoding.special_tokens_mask, encoding.attention_mask):
        if field is not None:
            widths.append(len(field))
    return max(widths)


def _place(block: np.ndarray, row: int, values: Sequence[int], padding_side: str) -> None:
    data = np.asarray(values, dtype=np.uint32)[: block.shape[1]]
    if padding_side == "right":
        block[row, : data.shape[0]] = data
    else:
        block[row, block.shape[1] - data.shape[0] :] = data


def pad_encodings(
    encodings: Sequence[Encoding],
    pad_token_id: int = 0,
    padding_side: PaddingSide = "right",
    max_length: int | None = None,
    truncation: bool = False,
) -> PaddedBatch:
    """
    Pad ``encodings`` into a rectangular block.

    The width is the longest field of any row (or ``max_length``: pad up to
    it, and cut down to it when ``truncation`` is set). Row ``i`` of every
    output array is filled from ``encodings[i]``. Padded positions hold
    ``pad_token_id`` in ``input_ids`` and 0 elsewhere. A row without an
    attention mask gets 1 for each of its ids.
    """
    _check_padding_side(padding_side)

    longest = max((_row_width(e) for e in encodings), default=0)
    if max_length is None:
        width = longest
    elif truncation:
        width = max_length
    else:
        width = max(longest, max_length)

    rows = len(encodings)
    input_ids = np.full((rows, width), pad_token_id, dtype=np.uint32)
    attention_mask = np.zeros((rows, width), dtype=np.uint32)
    has_type_ids = any(e.type_ids is not None for e in encodings)
    token_type_ids = np.zeros((rows, width), dtype=np.uint32) if has_type_ids else None

    for i, encoding in enumerate(encodings):
        ids = np.asarray(encoding.ids, dtype=np.uint32)
        _place(input_ids, i, ids, padding_side)
        if encoding.attention_mask is not None:
            _place(attention_mask, i, np.asarray(encoding.attention_mask, dtype=np.uint32), padding_side)
        else:
            _place(attention_mask, i, np.ones(ids.shape[0], dtype=np.uint32), padding_side)
        if token_type_ids is not None and encoding.type_ids is not None:
            _place(token_type_ids, i, np.asarray(encoding.type_ids, dtype=np.uint32), padding_side)

    return PaddedBatch(
        input_ids=input_ids,
        attention_mask=attention_mask,
        token_type_ids=token_type_ids,
        padding_side=padding_side,
        pad_token_id=pad_token_id,
    )


class BatchEncoding(MutableSequence[Encoding]):
    """
    Ordered container for batch tokenization results.

    Key Features
    ------------

    **List-like interface** - Works like a list of ``Encoding``:

        >>> batch = tokenizer.encode_batch(["Hello", "World"])
        >>> len(batch)
        2
        >>> batch[0].ids
        TokenArray([...], len=...)

    **Dictionary-like access** - Compatible with HuggingFace patterns:

        >>> batch["input_ids"].shape
        (2, 3)
        >>> batch["attention_mask"]

    **Lazy padding** - The padded block is built on first access to
    ``input_ids``, ``attention_mask``, ``token_type_ids`` or ``padded`` and
    reused afterwards. Any mutation of the batch (set, delete, insert,
    append) or of ``padding_side`` / ``pad_token_id`` discards it, so the
    next access rebuilds it from the current rows.

    ML Framework Integration
    ------------------------

    Export one of the padded arrays, not the batch:

        >>> input_ids = torch.from_dlpack(batch.input_ids)
        >>> tensor = torch.from_dlpack(batch)  # InteropError: which array?
    """

    __slots__ = ("_encodings", "_padded", "_padding_side", "_pad_token_id", "_lock", "_owner")

    def __init__(
        self,
        encodings: Iterable[Encoding] = (),
        *,
        padding_side: PaddingSide = "right",
        pad_token_id: int = 0,
        owner: SharedHandle | None = None,
    ) -> None:
        _check_padding_side(padding_side)
        self._encodings: list[Encoding] = [self._check(e) for e in encodings]
        self._padded: PaddedBatch | None = None
        self._padding_side = padding_side
        self._pad_token_id = pad_token_id
        self._lock = threading.Lock()
        # Parent allocation the rows were carved from (native batches only)
        self._owner = owner

    @staticmethod
    def _check(value: object) -> Encoding:
        if not isinstance(value, Encoding):
            raise ValidationError(
                f"BatchEncoding holds Encoding objects, got {type(value).__name__}",
                details={"type": type(value).__name__},
            )
        return value

    def _invalidate(self) -> None:
        with self._lock:
            self._padded = None

    # =========================================================================
    # Sequence protocol
    # =========================================================================

    def __len__(self) -> int:
        return len(self._encodings)

    @overload
    def __getitem__(self, key: int) -> Encoding: ...

    @overload
    def __getitem__(self, key: slice) -> list[Encoding]: ...

    @overload
    def __getitem__(self, key: str) -> np.ndarray: ...

    def __getitem__(self, key: int | slice | str) -> Encoding | list[Encoding] | np.ndarray:
        """
        Get a row by index (list-like) or a padded array by key (dict-like).

        Raises
        ------
            IndexError: If integer index is out of range.
            KeyError: If string key is unknown or the batch has no type ids.
        """
        if isinstance(key, str):
            if key not in _KEYS:
                raise KeyError(f"Unknown key {key!r}. Valid keys: {', '.join(_KEYS)}")
            value = getattr(self.padded, key)
            if value is None:
                raise KeyError(key)
            return value
        return self._encodings[key]

    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            value = [self._check(v) for v in value]
        else:
            value = self._check(value)
        self._encodings[index] = value
        self._invalidate()

    def __delitem__(self, index: int | slice) -> None:
        del self._encodings[index]
        self._invalidate()

    def insert(self, index: int, value: Encoding) -> None:
        self._encodings.insert(index, self._check(value))
        self._invalidate()

    def __contains__(self, value: object) -> bool:
        if isinstance(value, str):
            return value in self.keys()
        return any(value is e or value == e for e in self._encodings)

    def keys(self) -> list[str]:
        """Available padded-array keys (dict-like interface)."""
        has_type_ids = any(e.type_ids is not None for e in self._encodings)
        return list(_KEYS) if has_type_ids else list(_KEYS[:2])

    # =========================================================================
    # Lengths
    # =========================================================================

    def lengths(self) -> list[int]:
        """Number of ids in each row."""
        return [len(e.ids) for e in self._encodings]

    def max_length(self) -> int:
        return max(self.lengths(), default=0)

    @property
    def total_tokens(self) -> int:
        return sum(self.lengths())

    # =========================================================================
    # Padding
    # =========================================================================

    @property
    def padding_side(self) -> str:
        """
        Side for padding: "right" (default) or "left".

        Setting it discards a previously built padded block.
        """
        return self._padding_side

    @padding_side.setter
    def padding_side(self, value: str) -> None:
        _check_padding_side(value)
        if value != self._padding_side:
            self._padding_side = value
            self._invalidate()

    @property
    def pad_token_id(self) -> int:
        """Padding token ID used for ``input_ids``."""
        return self._pad_token_id

    @pad_token_id.setter
    def pad_token_id(self, value: int) -> None:
        if value != self._pad_token_id:
            self._pad_token_id = value
            self._invalidate()

    @property
    def is_padded(self) -> bool:
        """True if the padded block is currently materialized."""
        return self._padded is not None

    @property
    def padded(self) -> PaddedBatch:
        """The padded block, built at most once until the batch changes."""
        with self._lock:
            if self._padded is None:
                self._padded = pad_encodings(
                    self._encodings,
                    pad_token_id=self._pad_token_id,
                    padding_side=self._padding_side,
                )
            return self._padded

    @property
    def input_ids(self) -> np.ndarray:
        """Padded ids, shape ``(batch_size, width)``, dtype ``uint32``."""
        return self.padded.input_ids

    @property
    def attention_mask(self) -> np.ndarray:
        """1 for real tokens, 0 for padding; same shape as ``input_ids``."""
        return self.padded.attention_mask

    @property
    def token_type_ids(self) -> np.ndarray | None:
        return self.padded.token_type_ids

    def to_list(
        self,
        padding: bool = True,
        pad_id: int | None = None,
        padding_side: str | None = None,
        max_length: int | None = None,
        truncation: bool = False,
        return_attention_mask: bool = True,
    ) -> dict[str, list[list[int]]]:
        """
        Convert batch to padded Python lists.

        Primarily useful for debugging. Options left as None fall back to the
        batch's own settings. The cached padded block is not touched.

        Raises
        ------
            ValidationError: If padding_side is invalid, or if ``padding`` is
                False and rows differ in length.
        """
        final_side = padding_side if padding_side is not None else self._padding_side
        final_pad_id = pad_id if pad_id is not None else self._pad_token_id
        _check_padding_side(final_side)

        if not padding:
            seq_lengths = set(self.lengths())
            if len(seq_lengths) > 1:
                raise ValidationError(
                    f"Sequences have different lengths {sorted(seq_lengths)}. "
                    "Use padding=True to pad to uniform length.",
                    details={"lengths": sorted(seq_lengths)},
                )

        block = pad_encodings(
            self._encodings,
            pad_token_id=final_pad_id,
            padding_side=final_side,
            max_length=max_length,
            truncation=truncation,
        )
        output = {"input_ids": block.input_ids.tolist()}
        if return_attention_mask:
            output["attention_mask"] = block.attention_mask.tolist()
        if block.token_type_ids is not None:
            output["token_type_ids"] = block.token_type_ids.tolist()
        return output

    # =========================================================================
    # Lifetime
    # =========================================================================

    def close(self) -> None:
        """
        Release the rows in the batch and the batch's own share of its array.

        Rows removed earlier keep the array allocated until they are released.
        Safe to call multiple times.
        """
        for encoding in self._encodings:
            encoding.close()
        self._encodings = []
        if self._owner is not None:
            self._owner.close()
        self._invalidate()

    def __enter__(self) -> BatchEncoding:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"BatchEncoding(num_sequences={len(self)}, total_tokens={self.total_tokens})"

    # =========================================================================
    # DLPack Protocol
    # =========================================================================

    def __dlpack__(self, *, stream=None, **kwargs):
        """
        Raise InteropError because BatchEncoding contains multiple arrays.

        Raises
        ------
            InteropError: Always, with guidance on using explicit accessors.
        """
        raise InteropError(
            "BatchEncoding contains multiple arrays. "
            "Export specific fields:\n"
            "  input_ids = torch.from_dlpack(batch.input_ids)\n"
            "  attention_mask = torch.from_dlpack(batch.attention_mask)",
            code="AMBIGUOUS_EXPORT",
        )

    def __dlpack_device__(self):
        """Return device tuple for DLPack protocol (CPU)."""
        return (1, 0)  # kDLCPU = 1, device_id = 0
