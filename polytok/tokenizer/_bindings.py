"""
FFI bindings for the foreign tokenizer engine.

Justification: Provides call wrappers that handle ctypes marshalling at the
engine boundary (input byte buffers, ``ArrayHandle`` row tables, the
allocator/emplace-back callback handshake for token strings, ``ExportVec``
decoding). Each wrapper returns ``(error_code, value)``; a non-zero code means
the engine failed and ``last_error()`` holds its message.
"""

import ctypes
from collections.abc import Sequence

import numpy as np

from .._native import (
    ArrayHandle,
    ConvertArrayOffset,
    CustomAllocator,
    EmplaceBack,
    ExportVec,
)
from . import _engine

OK = 0
ENGINE_FAILURE = 1


def last_error() -> str:
    """Message of the last failed engine call on this thread."""
    return _engine.get_last_error()


def _bytes_buffer(data: bytes) -> ctypes.Array:
    return (ctypes.c_char * len(data)).from_buffer_copy(data)


def _id_buffer(ids: np.ndarray) -> tuple[int, int]:
    """(pointer, length) of a contiguous uint32 array."""
    return ids.ctypes.data, int(ids.shape[0])


def _status(code: int) -> int:
    return OK if code == 0 else ENGINE_FAILURE


# =============================================================================
# Callbacks
# =============================================================================


class _TokenSink:
    """Caller-side container filled by the engine through callbacks."""

    __slots__ = ("expected", "spans")

    def __init__(self) -> None:
        self.expected = 0
        self.spans: list[tuple[int, int]] = []


def _sink_from_args(args: int) -> _TokenSink:
    return ctypes.cast(args, ctypes.POINTER(ctypes.py_object)).contents.value


def _allocate(length: int, args: int) -> int:
    sink = _sink_from_args(args)
    sink.expected = length
    sink.spans = []
    return args


def _emplace_back(args: int, data: int, length: int) -> None:
    _sink_from_args(args).spans.append((data or 0, length))


def _convert_array_offset(base: int, index: int, out) -> None:
    out[0] = ctypes.cast(base, ctypes.POINTER(ArrayHandle))[index]


# Module-level so the C thunks outlive every call
_ALLOCATOR = CustomAllocator(_allocate)
_EMPLACE_BACK = EmplaceBack(_emplace_back)
_CONVERT_OFFSET = ConvertArrayOffset(_convert_array_offset)


# =============================================================================
# Construction
# =============================================================================


def call_tokenizer_from_json(json_bytes: bytes) -> tuple[int, int]:
    """Call tokenizers_new_from_str and return (error_code, tokenizer_handle)."""
    buf = _bytes_buffer(json_bytes)
    handle = _engine.tokenizers_new_from_str(ctypes.addressof(buf), len(buf))
    return (OK, handle) if handle else (ENGINE_FAILURE, 0)


def call_tokenizer_from_file(path: bytes) -> tuple[int, int]:
    """Call tokenizers_new_from_file and return (error_code, tokenizer_handle)."""
    buf = _bytes_buffer(path)
    handle = _engine.tokenizers_new_from_file(ctypes.addressof(buf), len(buf))
    return (OK, handle) if handle else (ENGINE_FAILURE, 0)


def call_tokenizer_from_byte_level_bpe(
    vocab: bytes, merges: bytes, added_tokens: bytes
) -> tuple[int, int]:
    """Call tokenizers_new_from_byte_level_bpe and return (error_code, tokenizer_handle)."""
    vocab_buf = _bytes_buffer(vocab)
    merges_buf = _bytes_buffer(merges)
    added_buf = _bytes_buffer(added_tokens)
    handle = _engine.tokenizers_new_from_byte_level_bpe(
        ctypes.addressof(vocab_buf),
        len(vocab_buf),
        ctypes.addressof(merges_buf),
        len(merges_buf),
        ctypes.addressof(added_buf),
        len(added_buf),
    )
    return (OK, handle) if handle else (ENGINE_FAILURE, 0)


def call_tokenizer_free(handle: int) -> int:
    return _status(_engine.tokenizers_free(handle))


# =============================================================================
# Encoding
# =============================================================================


def call_encode(handle: int, text: str, add_special_tokens: bool) -> tuple[int, int]:
    """Call tokenizers_encode and return (error_code, encoding_handle)."""
    buf = _bytes_buffer(text.encode("utf-8"))
    encoding = _engine.tokenizers_encode(
        handle, ctypes.addressof(buf), len(buf), 1 if add_special_tokens else 0
    )
    return (OK, encoding) if encoding else (ENGINE_FAILURE, 0)


def call_encoding_arrays(
    encoding: int,
) -> tuple[int, tuple[ArrayHandle, ArrayHandle, ArrayHandle, ArrayHandle]]:
    """
    Fetch the four per-token arrays of an encoding.

    Returns
    -------
        (error_code, (ids, type_ids, special_tokens_mask, attention_mask)).
        The handles borrow from the encoding block.
    """
    arrays = (
        _engine.tokenizers_encoding_ids(encoding),
        _engine.tokenizers_encoding_type_ids(encoding),
        _engine.tokenizers_encoding_special_tokens_mask(encoding),
        _engine.tokenizers_encoding_attention_mask(encoding),
    )
    if any(not array.ptr for array in arrays):
        return (ENGINE_FAILURE, arrays)
    return (OK, arrays)


def call_encoding_tokens(encoding: int) -> tuple[int, list[tuple[int, int]]]:
    """
    Collect ``(address, byte_length)`` of every token string via callbacks.

    The addresses borrow from the encoding block.
    """
    sink = _TokenSink()
    args = ctypes.py_object(sink)
    code = _engine.tokenizers_encoding_tokens(
        encoding, _ALLOCATOR, ctypes.addressof(args), _EMPLACE_BACK
    )
    if code != 0 or len(sink.spans) != sink.expected:
        return (ENGINE_FAILURE, [])
    return (OK, sink.spans)


def call_encoding_free(encoding: int) -> int:
    return _status(_engine.tokenizers_encoding_free(encoding))


def call_encode_batch(
    handle: int, texts: Sequence[str], add_special_tokens: bool
) -> tuple[int, ExportVec]:
    """Call tokenizers_encode_batch and return (error_code, ExportVec of encoding handles)."""
    buffers = [_bytes_buffer(text.encode("utf-8")) for text in texts]
    rows = (ArrayHandle * len(buffers))(
        *[ArrayHandle(ctypes.addressof(buf), len(buf)) for buf in buffers]
    )
    vec = _engine.tokenizers_encode_batch(
        handle,
        ctypes.addressof(rows),
        len(buffers),
        1 if add_special_tokens else 0,
        _CONVERT_OFFSET,
    )
    return (OK, vec) if vec.ptr else (ENGINE_FAILURE, vec)


def batch_encoding_handles(vec: ExportVec) -> list[int]:
    return _engine.encoding_handles(vec)


def call_encodings_free(vec: ExportVec) -> int:
    return _status(_engine.tokenizers_encodings_free(vec))


# =============================================================================
# Decoding
# =============================================================================


def call_decode(handle: int, ids: np.ndarray, skip_special_tokens: bool) -> tuple[int, ExportVec]:
    """Call tokenizers_decode with a contiguous uint32 array and return (error_code, ExportVec<u8>)."""
    ptr, length = _id_buffer(ids)
    vec = _engine.tokenizers_decode(handle, ptr, length, 1 if skip_special_tokens else 0)
    return (OK, vec) if vec.ptr else (ENGINE_FAILURE, vec)


def call_decode_batch(
    handle: int, rows: Sequence[np.ndarray], skip_special_tokens: bool
) -> tuple[int, ExportVec]:
    """Call tokenizers_decode_batch and return (error_code, ExportVec<ExportVec<u8>>)."""
    table = (ArrayHandle * len(rows))(*[ArrayHandle(*_id_buffer(row)) for row in rows])
    vec = _engine.tokenizers_decode_batch(
        handle,
        ctypes.addressof(table),
        len(rows),
        1 if skip_special_tokens else 0,
        _CONVERT_OFFSET,
    )
    return (OK, vec) if vec.ptr else (ENGINE_FAILURE, vec)


def batch_strings(vec: ExportVec) -> list[ExportVec]:
    return _engine.exported_strings(vec)


def call_string_free(vec: ExportVec) -> int:
    return _status(_engine.tokenizers_exported_string_free(vec))


def call_strings_free(vec: ExportVec) -> int:
    return _status(_engine.tokenizers_exported_strings_free(vec))


def call_strings_free_without_string_free(vec: ExportVec) -> int:
    return _status(_engine.tokenizers_exported_strings_free_without_string_free(vec))


# =============================================================================
# Vocabulary
# =============================================================================


def call_get_vocab_size(handle: int, with_added_tokens: bool = True) -> int:
    return _engine.tokenizers_get_vocab_size(handle, 1 if with_added_tokens else 0)


def call_id_to_token(handle: int, token_id: int) -> ExportVec:
    """Call tokenizers_id_to_token. A null ``ptr`` means the id is unknown."""
    return _engine.tokenizers_id_to_token(handle, token_id)


def call_token_to_id(handle: int, token: str) -> int:
    """Call tokenizers_token_to_id. Returns ``NOT_FOUND`` when the token is unknown."""
    buf = _bytes_buffer(token.encode("utf-8"))
    return _engine.tokenizers_token_to_id(handle, ctypes.addressof(buf), len(buf))
