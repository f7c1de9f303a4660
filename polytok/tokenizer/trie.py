"""
Greedy longest-prefix tokenizer over a byte trie.

The vocabulary is a plain ``{id: token}`` map (the RWKV "world" format when
loaded from msgpack). Encoding walks the UTF-8 bytes of the text and always
takes the longest vocabulary entry that matches at the current offset; there
are no merges, no normalization and no special tokens.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping

import msgpack
import numpy as np

from .._logging import scoped_logger
from .._native import NOT_FOUND
from ..config import TokenizerConfig
from ..exceptions import ForeignCallError, IntegrityError, ValidationError
from .decoding import Decoding
from .encoding import Encoding
from .token_array import TokenArray
from .tokenizer import Tokenizer

__all__ = ["VocabularyTrie", "TrieTokenizer"]

logger = scoped_logger("tokenizer")

_UNK = b"<unk>"


def _as_token_bytes(token: str | bytes) -> bytes:
    if isinstance(token, str):
        return token.encode("utf-8")
    if isinstance(token, (bytes, bytearray, memoryview)):
        return bytes(token)
    raise ValidationError(
        f"Vocabulary tokens must be str or bytes, got {type(token).__name__}",
        details={"param": "vocab", "type": type(token).__name__},
    )


class _TrieNode:
    __slots__ = ("children", "token_id", "token")

    def __init__(self) -> None:
        self.children: dict[int, _TrieNode] = {}
        self.token_id: int | None = None
        self.token: bytes | None = None


class VocabularyTrie(Mapping[bytes, int]):
    """
    Byte-level prefix tree mapping token bytes to ids.

    Built once; there is no mutation API. Edges are single bytes, so a
    multi-byte UTF-8 character spans several levels.

    Args:
        entries: ``{token: id}``. ``str`` tokens are stored as UTF-8.

    Raises
    ------
        IntegrityError: If a token is empty (code ``TRIE_EMPTY_TOKEN``).
    """

    __slots__ = ("_root", "_entries")

    def __init__(self, entries: Mapping[str | bytes, int]) -> None:
        self._root = _TrieNode()
        self._entries: dict[bytes, int] = {}
        for token, token_id in entries.items():
            self._insert(_as_token_bytes(token), int(token_id))

    def _insert(self, token: bytes, token_id: int) -> None:
        if not token:
            raise IntegrityError(
                "Vocabulary contains an empty token",
                code="TRIE_EMPTY_TOKEN",
                details={"token_id": token_id},
            )
        node = self._root
        for byte in token:
            child = node.children.get(byte)
            if child is None:
                child = node.children[byte] = _TrieNode()
            node = child
        node.token_id = token_id
        node.token = token
        self._entries[token] = token_id

    def find_longest_prefix(self, data: bytes, start: int = 0) -> tuple[bytes, int]:
        """
        Longest vocabulary entry that is a prefix of ``data[start:]``.

        Returns
        -------
            ``(matched_bytes, token_id)``.

        Raises
        ------
            IntegrityError: If no entry matches (code ``TRIE_NO_PREFIX``).
        """
        node = self._root
        match: tuple[bytes, int] | None = None
        for i in range(start, len(data)):
            node = node.children.get(data[i])
            if node is None:
                break
            if node.token_id is not None:
                match = (node.token, node.token_id)
        if match is None:
            raise IntegrityError(
                f"No vocabulary entry matches the input at byte offset {start}",
                code="TRIE_NO_PREFIX",
                details={"offset": start, "byte": data[start] if start < len(data) else None},
            )
        return match

    def __getitem__(self, token: bytes | str) -> int:
        return self._entries[_as_token_bytes(token)]

    def __contains__(self, token: object) -> bool:
        if not isinstance(token, (str, bytes)):
            return False
        return _as_token_bytes(token) in self._entries

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"VocabularyTrie(entries={len(self)})"


class TrieTokenizer(Tokenizer):
    """
    Tokenizer that greedily matches the longest vocabulary entry.

    Every id is Python-owned; nothing this backend returns goes through the
    handle registry.

    Example
    -------
    >>> tok = Tokenizer.from_vocab({1: "a", 2: "b", 3: "ab"})
    >>> tok.encode("abba").ids.tolist()
    [3, 2, 1]
    """

    __slots__ = ("_idx2word", "_word2idx", "_trie")

    backend = "trie"

    def __init__(self, vocab: Mapping[int, str | bytes], config: TokenizerConfig | None = None) -> None:
        super().__init__(config)
        self._idx2word: dict[int, bytes] = {}
        for token_id, token in vocab.items():
            if isinstance(token_id, bool) or not isinstance(token_id, (int, np.integer)):
                raise ValidationError(
                    f"Vocabulary ids must be integers, got {token_id!r}",
                    details={"param": "vocab"},
                )
            self._idx2word[int(token_id)] = _as_token_bytes(token)
        self._word2idx = {token: token_id for token_id, token in self._idx2word.items()}
        self._trie = VocabularyTrie(self._word2idx)
        logger.debug("Built vocabulary trie", extra={"backend": self.backend, "entries": len(self._trie)})

    @classmethod
    def from_msgpack(cls, blob: bytes, config: TokenizerConfig | None = None) -> TrieTokenizer:
        """Load a msgpack-encoded ``{id: token bytes}`` map."""
        try:
            vocab = msgpack.unpackb(bytes(blob), raw=True, strict_map_key=False)
        except Exception as exc:
            raise ForeignCallError(
                f"Failed to unpack trie vocabulary: {exc}",
                code="MODEL_LOAD_FAILED",
                details={"backend": cls.backend, "error_type": type(exc).__name__},
            ) from exc
        if not isinstance(vocab, dict):
            raise ForeignCallError(
                f"Trie vocabulary must be a map, got {type(vocab).__name__}",
                code="MODEL_LOAD_FAILED",
                details={"backend": cls.backend},
            )
        return cls(vocab, config=config)

    from_blob = from_msgpack

    @property
    def trie(self) -> VocabularyTrie:
        return self._trie

    def _check_populated(self) -> None:
        if not self._idx2word:
            raise IntegrityError(
                "Trie tokenizer has an empty vocabulary",
                code="VOCAB_EMPTY",
                details={"backend": self.backend},
            )

    def _encode(self, text: str, add_special_tokens: bool) -> Encoding:
        data = text.encode("utf-8")
        ids: list[int] = []
        offset = 0
        while offset < len(data):
            token, token_id = self._trie.find_longest_prefix(data, offset)
            ids.append(token_id)
            offset += len(token)
        return Encoding(ids=TokenArray.from_list(ids))

    def _decode(self, ids: np.ndarray, skip_special_tokens: bool) -> Decoding:
        return Decoding.from_bytes(b"".join(self._idx2word.get(int(i), _UNK) for i in ids))

    def _get_vocab_size(self) -> int:
        self._check_populated()
        return len(self._idx2word)

    def _id_to_token(self, token_id: int) -> Decoding:
        self._check_populated()
        return Decoding.from_bytes(self._idx2word.get(token_id, _UNK))

    def _token_to_id(self, token: str | bytes) -> int:
        self._check_populated()
        return self._word2idx.get(_as_token_bytes(token), NOT_FOUND)

    def _get_vocab(self) -> dict[str, int]:
        self._check_populated()
        return {token.decode("utf-8", errors="replace"): token_id for token, token_id in self._word2idx.items()}

    def __repr__(self) -> str:
        if self._closed:
            return "TrieTokenizer(closed)"
        return f"TrieTokenizer(vocab_size={len(self._idx2word)})"
