"""
Polytok - One tokenizer interface over several tokenizer engines.

Quick Start
-----------

    >>> from polytok import Tokenizer
    >>>
    >>> with Tokenizer.from_json_file("tokenizer.json") as tok:
    ...     enc = tok.encode("Hello world")
    ...     print(enc.ids.tolist())
    ...     print(tok.decode(enc.ids))
    [9707, 1879]
    Hello world

Batches pad lazily into NumPy arrays:

    >>> batch = tok.encode_batch(["Hello", "Hello world"])
    >>> batch.input_ids.shape
    (2, 2)


Backends
--------

- ``Tokenizer.from_blob_json`` / ``from_json_file`` / ``from_blob_byte_level_bpe``:
  HuggingFace ``tokenizers``. Results are zero-copy views over engine memory.
- ``Tokenizer.from_blob_sentencepiece``: SentencePiece models.
- ``Tokenizer.from_blob_trie`` / ``from_vocab``: greedy longest-prefix matching
  over a plain ``{id: token}`` vocabulary.

Token ids are unsigned 32-bit on every backend; ``token_to_id`` returns
``NOT_FOUND`` for unknown tokens.


Memory
------

Results that alias engine memory hold a ``SharedHandle``. The memory is freed
exactly once, when the last result viewing it is closed or collected.
``polytok.memory.get_registry()`` shows what is currently alive.


Logging
-------

Set ``POLYTOK_LOG_LEVEL`` (``debug``, ``info``, ``warn``, ...) and
``POLYTOK_LOG_FORMAT`` (``json`` or ``human``), or call ``setup_logging()``.
"""

from polytok._logging import setup_logging
from polytok._version import __version__ as __version__
from polytok.config import TokenizerConfig

# Exceptions (all via polytok.exceptions)
from polytok.exceptions import (
    ForeignCallError,
    IntegrityError,
    InteropError,
    PolytokError,
    StateError,
    TokenizerError,
    UnsupportedOperationError,
    ValidationError,
)

# Memory
from polytok.memory import (
    ForeignBuffer,
    HandleKind,
    HandleRegistry,
    SharedHandle,
    get_registry,
)

# Tokenizer
from polytok.tokenizer import (
    NOT_FOUND,
    BatchEncoding,
    Decoding,
    Encoding,
    HFTokenizer,
    PaddedBatch,
    SentencePieceTokenizer,
    TokenArray,
    Tokenizer,
    TrieTokenizer,
    VocabularyTrie,
)

# =============================================================================
# Public API
# =============================================================================
__all__ = [
    # Tokenizer
    "Tokenizer",
    "HFTokenizer",
    "SentencePieceTokenizer",
    "TrieTokenizer",
    "VocabularyTrie",
    "NOT_FOUND",
    # Results
    "Encoding",
    "Decoding",
    "TokenArray",
    "BatchEncoding",
    "PaddedBatch",
    # Configuration
    "TokenizerConfig",
    "setup_logging",
    # Memory
    "ForeignBuffer",
    "HandleKind",
    "HandleRegistry",
    "SharedHandle",
    "get_registry",
    # Exceptions
    "PolytokError",
    "IntegrityError",
    "UnsupportedOperationError",
    "ForeignCallError",
    "TokenizerError",
    "InteropError",
    "StateError",
    "ValidationError",
]
