"""
Single-sequence encoding result.

One record with optional fields covers every backend: the trie backend fills
``ids`` only; the sentence-piece backend adds a derived attention mask; the
foreign engine fills all fields as zero-copy views over one foreign block.
"""

from typing import Any

from ..memory import SharedHandle
from .decoding import Decoding
from .token_array import TokenArray

__all__ = ["Encoding"]

_FIELDS = ("ids", "type_ids", "tokens", "special_tokens_mask", "attention_mask")


class Encoding:
    """
    Result of ``Tokenizer.encode``.

    Attributes
    ----------
    ids : TokenArray
        Token ids.
    type_ids : TokenArray or None
        Segment ids (0 for the first sequence).
    tokens : list[Decoding] or None
        Token strings, one per id.
    special_tokens_mask : TokenArray or None
        1 where the token was added as a special token, else 0.
    attention_mask : TokenArray or None
        1 for every real token.

    Every view in the record is kept valid by ``owner``; closing the
    encoding releases that reference immediately.
    """

    __slots__ = ("ids", "type_ids", "tokens", "special_tokens_mask", "attention_mask", "_owner")

    def __init__(
        self,
        ids: TokenArray,
        type_ids: TokenArray | None = None,
        tokens: list[Decoding] | None = None,
        special_tokens_mask: TokenArray | None = None,
        attention_mask: TokenArray | None = None,
        owner: SharedHandle | None = None,
    ) -> None:
        self.ids = ids
        self.type_ids = type_ids
        self.tokens = tokens
        self.special_tokens_mask = special_tokens_mask
        self.attention_mask = attention_mask
        self._owner = owner

    @property
    def owner(self) -> SharedHandle | None:
        return self._owner

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self):
        return iter(self.ids)

    def to_dict(self) -> dict[str, Any]:
        """Plain-Python copy of every present field."""
        out: dict[str, Any] = {}
        for name in _FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "tokens":
                out[name] = [str(token) for token in value]
            else:
                out[name] = value.tolist()
        return out

    def close(self) -> None:
        """
        Release the owning reference now.

        For foreign-backed encodings the views raise ``StateError`` afterwards.
        Python-owned encodings (trie, SentencePiece) have no owner; their
        views stay readable.
        """
        if self._owner is not None:
            self._owner.close()

    def __enter__(self) -> "Encoding":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __eq__(self, other: object) -> bool:
        """Field-by-field comparison with another Encoding."""
        if not isinstance(other, Encoding):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        present = [name for name in _FIELDS[1:] if getattr(self, name) is not None]
        return f"Encoding(ids={self.ids!r}, fields={present})"
