"""
Tokenizer module - Text encoding and decoding.

Provides:
- Tokenizer: One facade over every backend
- HFTokenizer: HuggingFace ``tokenizers`` backend (zero-copy results)
- SentencePieceTokenizer: SentencePiece backend
- TrieTokenizer / VocabularyTrie: Greedy longest-prefix backend
- Encoding / Decoding / TokenArray: Result views
- BatchEncoding / PaddedBatch: Batch results and their padded block
"""

from .._native import NOT_FOUND
from .batch import BatchEncoding, PaddedBatch, pad_encodings
from .decoding import Decoding
from .encoding import Encoding
from .huggingface import HFTokenizer
from .sentencepiece import SentencePieceTokenizer
from .token_array import TokenArray
from .tokenizer import Tokenizer, as_token_ids
from .trie import TrieTokenizer, VocabularyTrie

# =============================================================================
# Public API
# =============================================================================
__all__ = [
    # Core
    "Tokenizer",
    "NOT_FOUND",
    "as_token_ids",
    # Backends
    "HFTokenizer",
    "SentencePieceTokenizer",
    "TrieTokenizer",
    "VocabularyTrie",
    # Results
    "Encoding",
    "Decoding",
    "TokenArray",
    # Batch Encoding
    "BatchEncoding",
    "PaddedBatch",
    "pad_encodings",
]
