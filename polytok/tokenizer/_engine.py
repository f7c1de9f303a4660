"""
C-style function table over HuggingFace ``tokenizers``.

Every object handed across this boundary lives in C-runtime memory from the
foreign allocator and is identified by its address:

- a tokenizer handle is a pointer-sized cell; the ``tokenizers.Tokenizer``
  behind it is kept in a table keyed by that address
- an encoding handle is one block laid out as four ``uint32`` arrays of
  ``n`` elements (ids, type ids, special-tokens mask, attention mask)
  followed by the UTF-8 bytes of every token
- batches and decoded strings are returned as ``ExportVec`` structures

Inputs are raw ``(pointer, length)`` pairs. Functions never raise: failures
return a null handle (or ``-1`` for frees) and leave a message readable
through ``get_last_error()`` on the calling thread.

Every handle returned here must be given back to its matching ``*_free``
function exactly once.
"""

import ctypes
import functools
import json
import threading
from dataclasses import dataclass

from tokenizers import Tokenizer as _HFTokenizer
from tokenizers import decoders, pre_tokenizers
from tokenizers.models import BPE

from .._logging import scoped_logger
from .._native import (
    NOT_FOUND,
    ArrayHandle,
    ConvertArrayOffset,
    CustomAllocator,
    EmplaceBack,
    ExportVec,
)
from ..memory import get_allocator

logger = scoped_logger("engine")

_U32 = ctypes.sizeof(ctypes.c_uint32)
_PTR = ctypes.sizeof(ctypes.c_void_p)

# Field order inside an encoding block
_IDS, _TYPE_IDS, _SPECIAL_TOKENS_MASK, _ATTENTION_MASK = range(4)


@dataclass(frozen=True)
class _EncodingLayout:
    length: int
    token_spans: tuple[tuple[int, int], ...]  # (offset from block start, byte length)


_objects: dict[int, object] = {}
_objects_lock = threading.Lock()
_state = threading.local()


def get_last_error() -> str:
    """Message of the last failed call on this thread ("" if none)."""
    return getattr(_state, "last_error", "")


def _c_call(failure):
    """Turn exceptions into ``failure()`` plus a thread-local error message."""

    def decorate(fn):
        @functools.wraps(fn)
        def wrapper(*args):
            _state.last_error = ""
            try:
                return fn(*args)
            except Exception as exc:
                _state.last_error = f"{type(exc).__name__}: {exc}"
                logger.debug("Engine call failed", extra={"call": fn.__name__, "error": _state.last_error})
                return failure()

        return wrapper

    return decorate


def _null() -> int:
    return 0


def _status_error() -> int:
    return -1


def _read_str(ptr: int, length: int) -> str:
    if not length:
        return ""
    return ctypes.string_at(ptr, length).decode("utf-8")


def _lookup(handle: int, kind: type):
    with _objects_lock:
        obj = _objects.get(handle)
    if not isinstance(obj, kind):
        raise KeyError(f"{handle:#x} is not a live {kind.__name__} handle")
    return obj


def _put(handle: int, obj: object) -> None:
    with _objects_lock:
        _objects[handle] = obj


def _pop(handle: int, kind: type) -> None:
    with _objects_lock:
        obj = _objects.get(handle)
        if not isinstance(obj, kind):
            raise KeyError(f"{handle:#x} is not a live {kind.__name__} handle")
        del _objects[handle]


def _new_tokenizer_handle(tokenizer: _HFTokenizer) -> int:
    handle = get_allocator().alloc(_PTR)
    _put(handle, tokenizer)
    return handle


def _export_encoding(encoding) -> int:
    ids = encoding.ids
    n = len(ids)
    fields = (
        ids,
        encoding.type_ids,
        encoding.special_tokens_mask,
        encoding.attention_mask,
    )
    tokens = [token.encode("utf-8") for token in encoding.tokens]

    arrays_size = len(fields) * n * _U32
    handle = get_allocator().alloc(arrays_size + sum(len(t) for t in tokens))

    for index, values in enumerate(fields):
        if n:
            (ctypes.c_uint32 * n).from_address(handle + index * n * _U32)[:] = list(values)

    spans = []
    offset = arrays_size
    for token in tokens:
        if token:
            ctypes.memmove(handle + offset, token, len(token))
        spans.append((offset, len(token)))
        offset += len(token)

    _put(handle, _EncodingLayout(length=n, token_spans=tuple(spans)))
    return handle


def _export_bytes(data: bytes) -> ExportVec:
    capacity = max(len(data), 1)
    ptr = get_allocator().alloc_copy(data)
    return ExportVec(ptr, capacity, len(data), 1)


def _read_rows(base: int, count: int, convert: ConvertArrayOffset) -> list[ArrayHandle]:
    rows = []
    for i in range(count):
        out = ArrayHandle()
        convert(base, i, ctypes.byref(out))
        rows.append(out)
    return rows


# =============================================================================
# Construction
# =============================================================================


@_c_call(_null)
def tokenizers_new_from_str(json_ptr: int, json_len: int) -> int:
    return _new_tokenizer_handle(_HFTokenizer.from_str(_read_str(json_ptr, json_len)))


@_c_call(_null)
def tokenizers_new_from_file(path_ptr: int, path_len: int) -> int:
    return _new_tokenizer_handle(_HFTokenizer.from_file(_read_str(path_ptr, path_len)))


def _parse_token_map(text: str, name: str) -> dict[str, int]:
    data = json.loads(text) if text.strip() else {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid {name}: expected a JSON object")
    return {token: int(token_id) for token, token_id in data.items() if isinstance(token_id, int)}


def _parse_merges(text: str) -> list[tuple[str, str]]:
    merges = []
    for line in text.splitlines():
        if not line or line.startswith("#version"):
            continue
        parts = line.split(" ")
        if len(parts) != 2:
            raise ValueError(f"Invalid merges line: {line!r}")
        merges.append((parts[0], parts[1]))
    return merges


@_c_call(_null)
def tokenizers_new_from_byte_level_bpe(
    vocab_ptr: int,
    vocab_len: int,
    merges_ptr: int,
    merges_len: int,
    added_tokens_ptr: int,
    added_tokens_len: int,
) -> int:
    vocab = _parse_token_map(_read_str(vocab_ptr, vocab_len), "vocab.json")
    vocab.update(_parse_token_map(_read_str(added_tokens_ptr, added_tokens_len), "added_tokens.json"))
    merges = _parse_merges(_read_str(merges_ptr, merges_len))

    tokenizer = _HFTokenizer(BPE(vocab=vocab, merges=merges))
    tokenizer.pre_tokenizer = pre_tokenizers.ByteLevel(add_prefix_space=False, use_regex=False)
    tokenizer.decoder = decoders.ByteLevel()
    return _new_tokenizer_handle(tokenizer)


# =============================================================================
# Encoding
# =============================================================================


@_c_call(_null)
def tokenizers_encode(handle: int, text_ptr: int, text_len: int, add_special_tokens: int) -> int:
    tokenizer = _lookup(handle, _HFTokenizer)
    encoding = tokenizer.encode(_read_str(text_ptr, text_len), add_special_tokens=bool(add_special_tokens))
    return _export_encoding(encoding)


def _field(handle: int, index: int) -> ArrayHandle:
    layout = _lookup(handle, _EncodingLayout)
    return ArrayHandle(handle + index * layout.length * _U32, layout.length)


@_c_call(ArrayHandle)
def tokenizers_encoding_ids(handle: int) -> ArrayHandle:
    return _field(handle, _IDS)


@_c_call(ArrayHandle)
def tokenizers_encoding_type_ids(handle: int) -> ArrayHandle:
    return _field(handle, _TYPE_IDS)


@_c_call(ArrayHandle)
def tokenizers_encoding_special_tokens_mask(handle: int) -> ArrayHandle:
    return _field(handle, _SPECIAL_TOKENS_MASK)


@_c_call(ArrayHandle)
def tokenizers_encoding_attention_mask(handle: int) -> ArrayHandle:
    return _field(handle, _ATTENTION_MASK)


@_c_call(_status_error)
def tokenizers_encoding_tokens(
    handle: int,
    allocator: CustomAllocator,
    allocator_args: int,
    emplace_back: EmplaceBack,
) -> int:
    layout = _lookup(handle, _EncodingLayout)
    allocator(len(layout.token_spans), allocator_args)
    for offset, length in layout.token_spans:
        emplace_back(allocator_args, handle + offset, length)
    return 0


@_c_call(ExportVec)
def tokenizers_encode_batch(
    handle: int,
    inputs: int,
    num_seqs: int,
    add_special_tokens: int,
    convert_array_offset: ConvertArrayOffset,
) -> ExportVec:
    tokenizer = _lookup(handle, _HFTokenizer)
    texts = [_read_str(row.ptr, row.len) for row in _read_rows(inputs, num_seqs, convert_array_offset)]
    encodings = tokenizer.encode_batch(texts, add_special_tokens=bool(add_special_tokens))

    allocator = get_allocator()
    array = allocator.alloc(max(num_seqs, 1) * _PTR)
    handles: list[int] = []
    try:
        for encoding in encodings:
            handles.append(_export_encoding(encoding))
    except Exception:
        for encoding_handle in handles:
            tokenizers_encoding_free(encoding_handle)
        allocator.free(array)
        raise
    if handles:
        (ctypes.c_void_p * len(handles)).from_address(array)[:] = handles
    return ExportVec(array, max(num_seqs, 1), len(handles), _PTR)


def encoding_handles(vec: ExportVec) -> list[int]:
    """Encoding handles stored in a batch ``ExportVec``."""
    if not vec.ptr or not vec.len:
        return []
    return [int(h) for h in (ctypes.c_void_p * vec.len).from_address(vec.ptr)]


# =============================================================================
# Decoding
# =============================================================================


@_c_call(ExportVec)
def tokenizers_decode(handle: int, ids_ptr: int, ids_len: int, skip_special_tokens: int) -> ExportVec:
    tokenizer = _lookup(handle, _HFTokenizer)
    ids = list((ctypes.c_uint32 * ids_len).from_address(ids_ptr)) if ids_len else []
    text = tokenizer.decode(ids, skip_special_tokens=bool(skip_special_tokens))
    return _export_bytes(text.encode("utf-8"))


@_c_call(ExportVec)
def tokenizers_decode_batch(
    handle: int,
    inputs: int,
    num_rows: int,
    skip_special_tokens: int,
    convert_array_offset: ConvertArrayOffset,
) -> ExportVec:
    tokenizer = _lookup(handle, _HFTokenizer)
    rows = [
        list((ctypes.c_uint32 * row.len).from_address(row.ptr)) if row.len else []
        for row in _read_rows(inputs, num_rows, convert_array_offset)
    ]
    texts = tokenizer.decode_batch(rows, skip_special_tokens=bool(skip_special_tokens))

    allocator = get_allocator()
    array = allocator.alloc(max(num_rows, 1) * ctypes.sizeof(ExportVec))
    strings = (ExportVec * num_rows).from_address(array)
    exported = 0
    try:
        for i, text in enumerate(texts):
            strings[i] = _export_bytes(text.encode("utf-8"))
            exported += 1
    except Exception:
        for i in range(exported):
            allocator.free(strings[i].ptr)
        allocator.free(array)
        raise
    return ExportVec(array, max(num_rows, 1), num_rows, ctypes.sizeof(ExportVec))


def exported_strings(vec: ExportVec) -> list[ExportVec]:
    """Copies of the string descriptors stored in a batch ``ExportVec``."""
    if not vec.ptr or not vec.len:
        return []
    strings = (ExportVec * vec.len).from_address(vec.ptr)
    return [ExportVec(s.ptr, s.capacity, s.len, s.type_size) for s in strings]


# =============================================================================
# Vocabulary
# =============================================================================


@_c_call(_null)
def tokenizers_get_vocab_size(handle: int, with_added_tokens: int = 1) -> int:
    return _lookup(handle, _HFTokenizer).get_vocab_size(with_added_tokens=bool(with_added_tokens))


@_c_call(ExportVec)
def tokenizers_id_to_token(handle: int, token_id: int) -> ExportVec:
    token = _lookup(handle, _HFTokenizer).id_to_token(token_id)
    if token is None:
        return ExportVec()
    return _export_bytes(token.encode("utf-8"))


@_c_call(lambda: NOT_FOUND)
def tokenizers_token_to_id(handle: int, token_ptr: int, token_len: int) -> int:
    token_id = _lookup(handle, _HFTokenizer).token_to_id(_read_str(token_ptr, token_len))
    return NOT_FOUND if token_id is None else token_id


# =============================================================================
# Frees
# =============================================================================


@_c_call(_status_error)
def tokenizers_free(handle: int) -> int:
    _pop(handle, _HFTokenizer)
    get_allocator().free(handle)
    return 0


@_c_call(_status_error)
def tokenizers_encoding_free(handle: int) -> int:
    _pop(handle, _EncodingLayout)
    get_allocator().free(handle)
    return 0


@_c_call(_status_error)
def tokenizers_encodings_free(vec: ExportVec) -> int:
    status = 0
    for handle in encoding_handles(vec):
        status |= tokenizers_encoding_free(handle)
    get_allocator().free(vec.ptr)
    return status


@_c_call(_status_error)
def tokenizers_exported_string_free(vec: ExportVec) -> int:
    get_allocator().free(vec.ptr)
    return 0


@_c_call(_status_error)
def tokenizers_exported_strings_free(vec: ExportVec) -> int:
    allocator = get_allocator()
    for string in exported_strings(vec):
        allocator.free(string.ptr)
    allocator.free(vec.ptr)
    return 0


@_c_call(_status_error)
def tokenizers_exported_strings_free_without_string_free(vec: ExportVec) -> int:
    get_allocator().free(vec.ptr)
    return 0
