"""
Text encoding and decoding.

Provides the ``Tokenizer`` facade: one interface over every backend engine
(HuggingFace ``tokenizers``, SentencePiece, the built-in trie tokenizer).
Backends implement a handful of primitives; the facade validates arguments,
applies configured defaults, fans batch calls out when a backend has no
native batch primitive, and translates engine errors into
``polytok.exceptions``.
"""

from __future__ import annotations

import abc
import os
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import numpy as np

from .._logging import scoped_logger
from .._native import NOT_FOUND, UINT32_MAX
from ..config import TokenizerConfig
from ..exceptions import (
    PolytokError,
    StateError,
    TokenizerError,
    UnsupportedOperationError,
    ValidationError,
)
from ..memory import SharedHandle
from .batch import BatchEncoding
from .decoding import Decoding
from .encoding import Encoding
from .token_array import TokenArray

if TYPE_CHECKING:
    from .huggingface import HFTokenizer
    from .sentencepiece import SentencePieceTokenizer
    from .trie import TrieTokenizer

__all__ = ["Tokenizer", "NOT_FOUND", "as_token_ids"]

logger = scoped_logger("tokenizer")


def _invalid_id(value: Any) -> ValidationError:
    return ValidationError(
        f"Token ids must be integers in [0, {UINT32_MAX}], got {value!r}",
        details={"param": "ids", "value": repr(value)},
    )


def as_token_ids(ids: Any) -> np.ndarray:
    """
    Coerce ``ids`` to a contiguous 1-D ``uint32`` array.

    Accepts a ``TokenArray``, a 1-D integer NumPy array, or any iterable of
    ints. TokenArrays are passed through without copying.

    Raises
    ------
    ValidationError
        If any id is not an integer or does not fit in 32 unsigned bits.
    """
    if isinstance(ids, TokenArray):
        return np.asarray(ids)
    if isinstance(ids, np.ndarray):
        if ids.ndim != 1:
            raise ValidationError(
                f"Expected a 1-D id array, got shape {ids.shape}",
                details={"param": "ids", "shape": list(ids.shape)},
            )
        if ids.dtype == np.uint32:
            return np.ascontiguousarray(ids)
        if ids.size and (ids.dtype.kind not in "iu" or ids.min() < 0 or ids.max() > UINT32_MAX):
            raise _invalid_id(ids)
        return ids.astype(np.uint32)

    values = list(ids)
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise _invalid_id(value)
        if not 0 <= value <= UINT32_MAX:
            raise _invalid_id(value)
    return np.array(values, dtype=np.uint32)


def _check_token_id(token_id: Any) -> int:
    if isinstance(token_id, bool) or not isinstance(token_id, (int, np.integer)):
        raise _invalid_id(token_id)
    if not 0 <= token_id <= UINT32_MAX:
        raise _invalid_id(token_id)
    return int(token_id)


def _read_blob(source: bytes | bytearray | memoryview | str | os.PathLike) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    with open(source, "rb") as fh:
        return fh.read()


class Tokenizer(abc.ABC):
    """
    Text-to-token encoder and token-to-text decoder over any backend.

    Build one through a factory:

    - ``Tokenizer.from_blob_json(json)`` / ``Tokenizer.from_json_file(path)``
      for a HuggingFace ``tokenizer.json``
    - ``Tokenizer.from_blob_byte_level_bpe(vocab, merges, added_tokens)``
    - ``Tokenizer.from_blob_sentencepiece(model_bytes)``
    - ``Tokenizer.from_blob_trie(msgpack_bytes)`` / ``Tokenizer.from_vocab(mapping)``

    Token ids are unsigned 32-bit integers on every backend, and
    ``token_to_id`` returns ``NOT_FOUND`` (``0xFFFFFFFF``) for unknown tokens
    instead of raising.

    Calls do not mutate shared state and each result is self-contained, so a
    tokenizer may be used from several threads. The facade adds no locking
    of its own.

    Example
    -------
    >>> with Tokenizer.from_json_file("tokenizer.json") as tok:
    ...     enc = tok.encode("Hello world")
    ...     str(tok.decode(enc.ids))
    'Hello world'
    """

    __slots__ = ("_config", "_closed", "__weakref__")

    backend = "abstract"

    def __init__(self, config: TokenizerConfig | None = None) -> None:
        if config is not None and not isinstance(config, TokenizerConfig):
            raise ValidationError(
                f"config must be a TokenizerConfig, got {type(config).__name__}",
                details={"param": "config"},
            )
        self._config = config if config is not None else TokenizerConfig()
        self._closed = False

    # =========================================================================
    # Factories
    # =========================================================================

    @staticmethod
    def from_blob_json(json_blob: str | bytes, config: TokenizerConfig | None = None) -> HFTokenizer:
        """Load a HuggingFace ``tokenizer.json`` held in memory."""
        from .huggingface import HFTokenizer

        return HFTokenizer.from_json(json_blob, config=config)

    @staticmethod
    def from_json_file(path: str | os.PathLike, config: TokenizerConfig | None = None) -> HFTokenizer:
        """Load a HuggingFace ``tokenizer.json`` from disk."""
        from .huggingface import HFTokenizer

        return HFTokenizer.from_file(path, config=config)

    @staticmethod
    def from_blob_byte_level_bpe(
        vocab_blob: str | bytes,
        merges_blob: str | bytes,
        added_tokens: str | bytes = "",
        config: TokenizerConfig | None = None,
    ) -> HFTokenizer:
        """Build a byte-level BPE tokenizer from ``vocab.json``, ``merges.txt`` and ``added_tokens.json`` contents."""
        from .huggingface import HFTokenizer

        return HFTokenizer.from_byte_level_bpe(vocab_blob, merges_blob, added_tokens, config=config)

    @staticmethod
    def from_blob_sentencepiece(
        model_blob: bytes | str | os.PathLike, config: TokenizerConfig | None = None
    ) -> SentencePieceTokenizer:
        """Load a serialized SentencePiece model (bytes, or a path to read them from)."""
        from .sentencepiece import SentencePieceTokenizer

        return SentencePieceTokenizer.from_serialized_proto(_read_blob(model_blob), config=config)

    @staticmethod
    def from_blob_trie(
        model_blob: bytes | str | os.PathLike, config: TokenizerConfig | None = None
    ) -> TrieTokenizer:
        """Load a msgpack ``{id: token bytes}`` vocabulary (bytes, or a path to read them from)."""
        from .trie import TrieTokenizer

        return TrieTokenizer.from_msgpack(_read_blob(model_blob), config=config)

    @staticmethod
    def from_vocab(
        vocab: Mapping[int, str | bytes], config: TokenizerConfig | None = None
    ) -> TrieTokenizer:
        """Build a trie tokenizer from an in-memory ``{id: token}`` mapping."""
        from .trie import TrieTokenizer

        return TrieTokenizer(vocab, config=config)

    # =========================================================================
    # Backend primitives
    # =========================================================================

    @abc.abstractmethod
    def _encode(self, text: str, add_special_tokens: bool) -> Encoding: ...

    @abc.abstractmethod
    def _decode(self, ids: np.ndarray, skip_special_tokens: bool) -> Decoding: ...

    @abc.abstractmethod
    def _get_vocab_size(self) -> int: ...

    @abc.abstractmethod
    def _id_to_token(self, token_id: int) -> Decoding: ...

    @abc.abstractmethod
    def _token_to_id(self, token: str | bytes) -> int: ...

    def _encode_batch(self, texts: list[str], add_special_tokens: bool) -> BatchEncoding:
        return self._new_batch([self._encode(text, add_special_tokens) for text in texts])

    def _decode_batch(self, rows: list[np.ndarray], skip_special_tokens: bool) -> list[Decoding]:
        return [self._decode(row, skip_special_tokens) for row in rows]

    def _get_vocab(self) -> dict[str, int]:
        raise UnsupportedOperationError(
            f"The {self.backend} backend cannot enumerate its vocabulary",
            details={"backend": self.backend, "operation": "get_vocab"},
        )

    def _close(self) -> None:
        """Release backend resources. Called once."""

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise StateError("Tokenizer is closed", code="STATE_CLOSED", details={"backend": self.backend})

    @contextmanager
    def _backend_call(self, operation: str) -> Iterator[None]:
        """Translate engine exceptions into the polytok taxonomy."""
        self._ensure_open()
        try:
            yield
        except (PolytokError, MemoryError):
            raise
        except Exception as exc:
            logger.debug(
                "Backend call failed",
                extra={"backend": self.backend, "operation": operation, "error": str(exc)},
            )
            raise TokenizerError(
                f"{self.backend} {operation} failed: {exc}",
                code=f"{operation.upper()}_FAILED",
                details={"backend": self.backend, "error_type": type(exc).__name__},
            ) from exc

    def _new_batch(self, encodings: list[Encoding], owner: SharedHandle | None = None) -> BatchEncoding:
        return BatchEncoding(
            encodings,
            padding_side=self._config.padding_side,
            pad_token_id=self._config.pad_token_id,
            owner=owner,
        )

    def _resolve_add(self, add_special_tokens: bool | None) -> bool:
        if add_special_tokens is None:
            return self._config.add_special_tokens
        return bool(add_special_tokens)

    def _resolve_skip(self, skip_special_tokens: bool | None) -> bool:
        if skip_special_tokens is None:
            return self._config.skip_special_tokens
        return bool(skip_special_tokens)

    @staticmethod
    def _check_text(text: Any) -> str:
        if not isinstance(text, str):
            raise ValidationError(
                f"Expected str, got {type(text).__name__}",
                details={"param": "text", "type": type(text).__name__},
            )
        return text

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> TokenizerConfig:
        """Defaults applied when a call leaves an option as None."""
        return self._config

    @config.setter
    def config(self, value: TokenizerConfig) -> None:
        if not isinstance(value, TokenizerConfig):
            raise ValidationError(
                f"config must be a TokenizerConfig, got {type(value).__name__}",
                details={"param": "config"},
            )
        self._config = value

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def vocab_size(self) -> int:
        """Number of ids in the vocabulary."""
        return self.get_vocab_size()

    # =========================================================================
    # Encoding
    # =========================================================================

    def encode(self, text: str, add_special_tokens: bool | None = None) -> Encoding:
        """
        Encode one text.

        Args:
            text: Text to encode.
            add_special_tokens: Add the backend's special tokens. Defaults to
                ``config.add_special_tokens``.

        Returns
        -------
            Encoding with at least ``ids``; other fields depend on the backend.

        Raises
        ------
            ValidationError: If text is not a str.
            IntegrityError: If the vocabulary cannot cover the text (trie).
            TokenizerError: If the engine fails.
            StateError: If the tokenizer is closed.
        """
        text = self._check_text(text)
        with self._backend_call("encode"):
            return self._encode(text, self._resolve_add(add_special_tokens))

    def encode_batch(
        self, texts: Iterable[str], add_special_tokens: bool | None = None
    ) -> BatchEncoding:
        """
        Encode several texts.

        Row ``i`` of the result is the encoding of ``texts[i]``. The padded
        block is built lazily on first access.

        Raises
        ------
            ValidationError: If texts is a str or contains a non-str.
        """
        if isinstance(texts, str):
            raise ValidationError(
                "encode_batch expects a sequence of str, not a single str",
                details={"param": "texts"},
            )
        texts = [self._check_text(text) for text in texts]
        with self._backend_call("encode_batch"):
            return self._encode_batch(texts, self._resolve_add(add_special_tokens))

    def count_tokens(self, text: str, add_special_tokens: bool | None = None) -> int:
        """Number of ids ``encode(text)`` would produce."""
        with self.encode(text, add_special_tokens) as encoding:
            return len(encoding)

    def __call__(
        self,
        text: str | Sequence[str],
        add_special_tokens: bool | None = None,
        **kwargs: Any,
    ) -> BatchEncoding:
        """
        Callable interface returning a BatchEncoding.

        A single string is wrapped as a batch of one, so
        ``tokenizer("Hello")["input_ids"]`` has shape ``(1, n)``.
        """
        for key in kwargs:
            logger.warning("Unknown argument ignored in tokenizer()", extra={"argument": key})
        texts = [text] if isinstance(text, str) else text
        return self.encode_batch(texts, add_special_tokens)

    # =========================================================================
    # Decoding
    # =========================================================================

    def decode(self, ids: Any, skip_special_tokens: bool | None = None) -> Decoding:
        """
        Decode token ids back to text.

        Args:
            ids: TokenArray, 1-D integer array, or iterable of ints.
            skip_special_tokens: Drop special tokens from the output. Defaults
                to ``config.skip_special_tokens``.

        Raises
        ------
            ValidationError: If an id is not an unsigned 32-bit integer.
        """
        ids = as_token_ids(ids)
        with self._backend_call("decode"):
            return self._decode(ids, self._resolve_skip(skip_special_tokens))

    def decode_batch(self, ids_batch: Any, skip_special_tokens: bool | None = None) -> list[Decoding]:
        """
        Decode several id sequences; output order matches input order.

        Args:
            ids_batch: A BatchEncoding (unpadded rows are used), a 2-D integer
                array, or a sequence of id sequences.
        """
        if isinstance(ids_batch, BatchEncoding):
            rows = [as_token_ids(encoding.ids) for encoding in ids_batch]
        elif isinstance(ids_batch, np.ndarray):
            if ids_batch.ndim != 2:
                raise ValidationError(
                    f"Expected a 2-D id array, got shape {ids_batch.shape}",
                    details={"param": "ids_batch", "shape": list(ids_batch.shape)},
                )
            rows = [as_token_ids(row) for row in ids_batch]
        else:
            rows = [as_token_ids(row) for row in ids_batch]
        with self._backend_call("decode_batch"):
            return self._decode_batch(rows, self._resolve_skip(skip_special_tokens))

    # =========================================================================
    # Vocabulary
    # =========================================================================

    def get_vocab_size(self) -> int:
        """
        Number of ids in the vocabulary.

        Raises
        ------
            IntegrityError: If the vocabulary was never populated.
        """
        with self._backend_call("get_vocab_size"):
            return self._get_vocab_size()

    def id_to_token(self, token_id: int) -> Decoding:
        """
        Token string for ``token_id``.

        Unknown ids give ``"<unk>"`` on the trie backend and an empty
        Decoding on the other backends.
        """
        token_id = _check_token_id(token_id)
        with self._backend_call("id_to_token"):
            return self._id_to_token(token_id)

    def token_to_id(self, token: str | bytes) -> int:
        """Id of ``token``, or ``NOT_FOUND`` if the vocabulary lacks it."""
        if not isinstance(token, (str, bytes)):
            raise ValidationError(
                f"Expected str or bytes, got {type(token).__name__}",
                details={"param": "token", "type": type(token).__name__},
            )
        with self._backend_call("token_to_id"):
            return self._token_to_id(token)

    def get_vocab(self) -> dict[str, int]:
        """Copy of the ``{token: id}`` vocabulary."""
        with self._backend_call("get_vocab"):
            return self._get_vocab()

    def convert_ids_to_tokens(self, ids: Iterable[int]) -> list[str]:
        return [self.id_to_token(token_id).text for token_id in ids]

    def convert_tokens_to_ids(self, tokens: Iterable[str]) -> list[int]:
        return [self.token_to_id(token) for token in tokens]

    def __contains__(self, token: object) -> bool:
        if not isinstance(token, (str, bytes)):
            return False
        return self.token_to_id(token) != NOT_FOUND

    def __len__(self) -> int:
        return self.get_vocab_size()

    def clear_cache(self) -> None:
        """Drop any per-call caches held by the backend. No backend keeps one today."""
        self._ensure_open()

    # =========================================================================
    # Lifetime
    # =========================================================================

    def close(self) -> None:
        """
        Release backend resources.

        Results already returned stay valid. After close() every call raises
        ``StateError``. Safe to call multiple times.
        """
        if self._closed:
            return
        self._closed = True
        self._close()
        logger.debug("Closed tokenizer", extra={"backend": self.backend})

    def __enter__(self) -> Tokenizer:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._closed:
            return f"{type(self).__name__}(backend={self.backend!r}, closed)"
        return f"{type(self).__name__}(backend={self.backend!r})"
