"""
HuggingFace ``tokenizers`` backend.

Every result of this backend lives in foreign memory and is tracked by the
handle registry:

- the tokenizer itself: ``OWNING_TOKENIZER``
- a single encoding: ``OWNING_ENCODING``, shared by all of its views
- a native batch: one ``OWNING_ENCODING_ARRAY`` for the array plus a
  ``PARENTED`` handle per row; rows never free anything themselves
- decoded strings and token strings from ``id_to_token``: ``OWNING_STRING``

If anything fails after the engine handed back a handle, the handle is freed
before the error propagates, so no registry record is left behind.
"""

from __future__ import annotations

import ctypes
import os

import numpy as np

from .._logging import scoped_logger
from .._native import NOT_FOUND, ArrayHandle, ExportVec
from ..config import TokenizerConfig
from ..exceptions import ForeignCallError, TokenizerError
from ..memory import ForeignBuffer, ForeignHandle, HandleKind, SharedHandle
from . import _bindings
from .batch import BatchEncoding
from .decoding import Decoding
from .encoding import Encoding
from .token_array import TokenArray
from .tokenizer import Tokenizer

__all__ = ["HFTokenizer"]

logger = scoped_logger("tokenizer")

_U32 = ctypes.sizeof(ctypes.c_uint32)
_PTR = ctypes.sizeof(ctypes.c_void_p)


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _vec(buffer: ForeignBuffer) -> ExportVec:
    return ExportVec(buffer.address, buffer.capacity, buffer.length, buffer.element_size)


def _check_free(code: int, what: str, buffer: ForeignBuffer) -> None:
    if code != _bindings.OK:
        raise ForeignCallError(
            f"Failed to free {what}: {_bindings.last_error()}",
            code="FREE_FAILED",
            details={"address": buffer.address},
        )


def _free_tokenizer(buffer: ForeignBuffer) -> None:
    _check_free(_bindings.call_tokenizer_free(buffer.address), "tokenizer", buffer)


def _free_encoding(buffer: ForeignBuffer) -> None:
    _check_free(_bindings.call_encoding_free(buffer.address), "encoding", buffer)


def _free_encodings(buffer: ForeignBuffer) -> None:
    _check_free(_bindings.call_encodings_free(_vec(buffer)), "encoding array", buffer)


def _free_string(buffer: ForeignBuffer) -> None:
    _check_free(_bindings.call_string_free(_vec(buffer)), "string", buffer)


def _string_buffer(vec: ExportVec) -> ForeignBuffer:
    return ForeignBuffer(vec.ptr, vec.len, 1, vec.capacity)


class HFTokenizer(Tokenizer):
    """
    Tokenizer backed by the HuggingFace ``tokenizers`` engine.

    Create it through ``Tokenizer.from_blob_json``, ``Tokenizer.from_json_file``
    or ``Tokenizer.from_blob_byte_level_bpe``.

    Encodings carry every field (ids, type ids, tokens, special-tokens mask,
    attention mask) as zero-copy views over engine memory. ``encode_batch``
    and ``decode_batch`` use the engine's native batch calls.
    """

    __slots__ = ("_owner",)

    backend = "huggingface"

    def __init__(self, handle: int, config: TokenizerConfig | None = None) -> None:
        """
        Adopt an engine tokenizer handle. Internal; use the factories.

        The handle is freed here if adoption fails.
        """
        try:
            super().__init__(config)
            self._owner = SharedHandle(
                ForeignHandle.owning(
                    HandleKind.OWNING_TOKENIZER, ForeignBuffer(handle, 1, _PTR), _free_tokenizer
                )
            )
        except BaseException:
            _bindings.call_tokenizer_free(handle)
            raise
        logger.debug("Created tokenizer", extra={"backend": self.backend, "address": hex(handle)})

    @classmethod
    def _adopt(cls, code: int, handle: int, source: str, config: TokenizerConfig | None) -> HFTokenizer:
        if code != _bindings.OK:
            raise ForeignCallError(
                f"Failed to load tokenizer from {source}: {_bindings.last_error()}",
                code="MODEL_LOAD_FAILED",
                details={"backend": cls.backend, "source": source},
            )
        return cls(handle, config)

    @classmethod
    def from_json(cls, json_blob: str | bytes, config: TokenizerConfig | None = None) -> HFTokenizer:
        """Load a ``tokenizer.json`` held in memory."""
        code, handle = _bindings.call_tokenizer_from_json(_as_bytes(json_blob))
        return cls._adopt(code, handle, "json", config)

    @classmethod
    def from_file(cls, path: str | os.PathLike, config: TokenizerConfig | None = None) -> HFTokenizer:
        """Load a ``tokenizer.json`` from disk."""
        code, handle = _bindings.call_tokenizer_from_file(os.fsencode(path))
        return cls._adopt(code, handle, os.fspath(path), config)

    @classmethod
    def from_byte_level_bpe(
        cls,
        vocab_blob: str | bytes,
        merges_blob: str | bytes,
        added_tokens: str | bytes = "",
        config: TokenizerConfig | None = None,
    ) -> HFTokenizer:
        """
        Build a byte-level BPE tokenizer.

        Args:
            vocab_blob: Contents of ``vocab.json`` (``{token: id}``).
            merges_blob: Contents of ``merges.txt``; a ``#version`` header is skipped.
            added_tokens: Contents of ``added_tokens.json`` (``{token: id}``), optional.
        """
        code, handle = _bindings.call_tokenizer_from_byte_level_bpe(
            _as_bytes(vocab_blob), _as_bytes(merges_blob), _as_bytes(added_tokens)
        )
        return cls._adopt(code, handle, "byte_level_bpe", config)

    @property
    def _handle(self) -> int:
        """Engine tokenizer handle, raising if released."""
        return self._owner.buffer.address

    def _failure(self, operation: str) -> TokenizerError:
        return TokenizerError(
            f"{operation} failed: {_bindings.last_error()}",
            code=f"{operation.upper()}_FAILED",
            details={"backend": self.backend},
        )

    # =========================================================================
    # Encoding
    # =========================================================================

    def _arrays(self, encoding: int) -> tuple[ArrayHandle, ...]:
        code, arrays = _bindings.call_encoding_arrays(encoding)
        if code != _bindings.OK:
            raise self._failure("encode")
        return arrays

    def _build(self, encoding: int, arrays: tuple[ArrayHandle, ...], owner: SharedHandle) -> Encoding:
        ids, type_ids, special_tokens_mask, attention_mask = arrays
        code, spans = _bindings.call_encoding_tokens(encoding)
        if code != _bindings.OK:
            raise self._failure("encode")
        return Encoding(
            ids=TokenArray.from_address(ids.ptr, ids.len, owner),
            type_ids=TokenArray.from_address(type_ids.ptr, type_ids.len, owner),
            tokens=[Decoding.from_address(ptr, length, owner) for ptr, length in spans],
            special_tokens_mask=TokenArray.from_address(
                special_tokens_mask.ptr, special_tokens_mask.len, owner
            ),
            attention_mask=TokenArray.from_address(attention_mask.ptr, attention_mask.len, owner),
            owner=owner,
        )

    def _encode(self, text: str, add_special_tokens: bool) -> Encoding:
        code, encoding = _bindings.call_encode(self._handle, text, add_special_tokens)
        if code != _bindings.OK:
            raise self._failure("encode")

        owner = None
        try:
            arrays = self._arrays(encoding)
            owner = SharedHandle(
                ForeignHandle.owning(
                    HandleKind.OWNING_ENCODING,
                    ForeignBuffer(encoding, arrays[0].len, _U32),
                    _free_encoding,
                )
            )
            return self._build(encoding, arrays, owner)
        except BaseException:
            if owner is None:
                _bindings.call_encoding_free(encoding)
            else:
                owner.close()
            raise

    def _encode_batch(self, texts: list[str], add_special_tokens: bool) -> BatchEncoding:
        code, vec = _bindings.call_encode_batch(self._handle, texts, add_special_tokens)
        if code != _bindings.OK:
            raise self._failure("encode_batch")

        parent = None
        children: list[SharedHandle] = []
        try:
            parent = SharedHandle(
                ForeignHandle.owning(
                    HandleKind.OWNING_ENCODING_ARRAY,
                    ForeignBuffer(vec.ptr, vec.len, vec.type_size, vec.capacity),
                    _free_encodings,
                )
            )
            encodings = []
            for encoding in _bindings.batch_encoding_handles(vec):
                arrays = self._arrays(encoding)
                child = parent.child(ForeignBuffer(encoding, arrays[0].len, _U32))
                children.append(child)
                encodings.append(self._build(encoding, arrays, child))
            return self._new_batch(encodings, owner=parent)
        except BaseException:
            for child in children:
                child.close()
            if parent is None:
                _bindings.call_encodings_free(vec)
            else:
                parent.close()
            raise

    # =========================================================================
    # Decoding
    # =========================================================================

    def _adopt_string(self, vec: ExportVec) -> Decoding:
        owner = None
        try:
            owner = SharedHandle(
                ForeignHandle.owning(HandleKind.OWNING_STRING, _string_buffer(vec), _free_string)
            )
            return Decoding.from_address(vec.ptr, vec.len, owner)
        except BaseException:
            if owner is None:
                _bindings.call_string_free(vec)
            else:
                owner.close()
            raise

    def _decode(self, ids: np.ndarray, skip_special_tokens: bool) -> Decoding:
        code, vec = _bindings.call_decode(self._handle, ids, skip_special_tokens)
        if code != _bindings.OK:
            raise self._failure("decode")
        return self._adopt_string(vec)

    def _decode_batch(self, rows: list[np.ndarray], skip_special_tokens: bool) -> list[Decoding]:
        code, vec = _bindings.call_decode_batch(self._handle, rows, skip_special_tokens)
        if code != _bindings.OK:
            raise self._failure("decode_batch")

        strings = _bindings.batch_strings(vec)
        results: list[Decoding] = []
        try:
            for string in strings:
                results.append(self._adopt_string(string))
        except BaseException:
            # The string that failed was freed by _adopt_string
            for string in strings[len(results) + 1 :]:
                _bindings.call_string_free(string)
            for decoding in results:
                decoding.owner.close()
            _bindings.call_strings_free_without_string_free(vec)
            raise

        # Each string is now owned by its Decoding; drop only the outer array
        if _bindings.call_strings_free_without_string_free(vec) != _bindings.OK:
            raise ForeignCallError(
                f"Failed to free decode_batch array: {_bindings.last_error()}",
                code="FREE_FAILED",
                details={"address": vec.ptr},
            )
        return results

    # =========================================================================
    # Vocabulary
    # =========================================================================

    def _get_vocab_size(self) -> int:
        size = _bindings.call_get_vocab_size(self._handle)
        if not size and _bindings.last_error():
            raise self._failure("get_vocab_size")
        return size

    def _id_to_token(self, token_id: int) -> Decoding:
        vec = _bindings.call_id_to_token(self._handle, token_id)
        if not vec.ptr:
            if _bindings.last_error():
                raise self._failure("id_to_token")
            return Decoding.empty()
        return self._adopt_string(vec)

    def _token_to_id(self, token: str | bytes) -> int:
        if isinstance(token, bytes):
            try:
                token = token.decode("utf-8")
            except UnicodeDecodeError:
                return NOT_FOUND
        token_id = _bindings.call_token_to_id(self._handle, token)
        if token_id == NOT_FOUND and _bindings.last_error():
            raise self._failure("token_to_id")
        return token_id

    def _get_vocab(self) -> dict[str, int]:
        # The engine exports no vocabulary map; walk the id space instead.
        vocab: dict[str, int] = {}
        for token_id in range(self._get_vocab_size()):
            token = self._id_to_token(token_id)
            if len(token):
                vocab.setdefault(token.text, token_id)
        return vocab

    def _close(self) -> None:
        self._owner.close()

    def __repr__(self) -> str:
        if self._closed:
            return "HFTokenizer(closed)"
        return f"HFTokenizer(vocab_size={self.get_vocab_size()})"

