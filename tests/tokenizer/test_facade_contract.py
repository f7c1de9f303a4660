"""
Facade contract tests.

Every backend must honor the same surface: uint32 ids, the shared NOT_FOUND
sentinel, ordered batches, config defaults, and StateError after close().
"""

import numpy as np
import pytest

from polytok import NOT_FOUND, TokenizerConfig
from polytok.exceptions import StateError, UnsupportedOperationError, ValidationError
from polytok.tokenizer import BatchEncoding, Decoding, Encoding, TokenArray, Tokenizer


class TestSharedSurface:
    """Behavior identical across backends."""

    def test_not_found_sentinel(self, any_tokenizer):
        """Unknown tokens map to the all-ones uint32 value."""
        assert NOT_FOUND == 0xFFFFFFFF
        assert any_tokenizer.token_to_id("definitely-not-in-any-vocab") == NOT_FOUND
        assert "definitely-not-in-any-vocab" not in any_tokenizer

    def test_ids_are_uint32(self, any_tokenizer):
        enc = any_tokenizer.encode("the cat")

        assert isinstance(enc, Encoding)
        assert isinstance(enc.ids, TokenArray)
        assert np.asarray(enc.ids).dtype == np.uint32

    def test_decode_returns_decoding(self, any_tokenizer):
        ids = any_tokenizer.encode("hello", add_special_tokens=False).ids

        result = any_tokenizer.decode(ids)
        assert isinstance(result, Decoding)
        assert "hello" in str(result)

    def test_batch_order_preserved(self, any_tokenizer):
        """Row i of encode_batch equals encode(texts[i])."""
        texts = ["the cat", "hello", "the mat, the cat", ""]
        batch = any_tokenizer.encode_batch(texts)

        assert isinstance(batch, BatchEncoding)
        assert len(batch) == len(texts)
        for text, row in zip(texts, batch):
            assert row.ids.tolist() == any_tokenizer.encode(text).ids.tolist()

    def test_decode_batch_order_preserved(self, any_tokenizer):
        texts = ["the cat", "hello", "the mat"]
        rows = [any_tokenizer.encode(t, add_special_tokens=False).ids.tolist() for t in texts]

        decoded = any_tokenizer.decode_batch(rows)
        assert [str(d) for d in decoded] == [str(any_tokenizer.decode(r)) for r in rows]

    def test_count_tokens(self, any_tokenizer):
        assert any_tokenizer.count_tokens("the cat") == len(any_tokenizer.encode("the cat"))

    def test_call_returns_batch(self, any_tokenizer):
        """tokenizer(text) wraps a single string in a batch of one."""
        batch = any_tokenizer("the cat")

        assert isinstance(batch, BatchEncoding)
        assert batch["input_ids"].shape[0] == 1

    def test_vocab_size_positive(self, any_tokenizer):
        assert any_tokenizer.vocab_size == any_tokenizer.get_vocab_size() > 0

    def test_convert_helpers(self, any_tokenizer):
        ids = any_tokenizer.convert_tokens_to_ids(["definitely-missing"])
        assert ids == [NOT_FOUND]
        assert isinstance(any_tokenizer.convert_ids_to_tokens([0])[0], str)

    def test_invalid_ids_rejected(self, any_tokenizer):
        for bad in ([2**32], [-1], [1.5], ["1"], [True]):
            with pytest.raises(ValidationError):
                any_tokenizer.decode(bad)
        with pytest.raises(ValidationError):
            any_tokenizer.id_to_token(-5)

    def test_token_to_id_type_checked(self, any_tokenizer):
        with pytest.raises(ValidationError):
            any_tokenizer.token_to_id(42)


class TestClosedTokenizer:
    """Every call after close() raises StateError."""

    def test_calls_after_close(self, any_tokenizer):
        any_tokenizer.close()

        calls = [
            lambda: any_tokenizer.encode("x"),
            lambda: any_tokenizer.encode_batch(["x"]),
            lambda: any_tokenizer.decode([1]),
            lambda: any_tokenizer.decode_batch([[1]]),
            any_tokenizer.get_vocab_size,
            lambda: any_tokenizer.id_to_token(1),
            lambda: any_tokenizer.token_to_id("x"),
            any_tokenizer.get_vocab,
            any_tokenizer.clear_cache,
        ]
        for call in calls:
            with pytest.raises(StateError) as exc_info:
                call()
            assert exc_info.value.code == "STATE_CLOSED"

    def test_close_is_idempotent(self, any_tokenizer):
        any_tokenizer.close()
        any_tokenizer.close()

        assert any_tokenizer.closed
        assert "closed" in repr(any_tokenizer)

    def test_results_survive_close(self, any_tokenizer):
        """Results returned before close() stay readable."""
        enc = any_tokenizer.encode("the cat")
        expected = list(enc.ids)
        any_tokenizer.close()

        assert enc.ids.tolist() == expected


class TestConfigDefaults:
    """TokenizerConfig supplies defaults for None arguments."""

    def test_add_special_tokens_default(self, word_level_json):
        from polytok import Tokenizer

        config = TokenizerConfig(add_special_tokens=False)
        with Tokenizer.from_blob_json(word_level_json, config=config) as tok:
            assert tok.encode("hello").ids.tolist() == [4]
            assert len(tok.encode("hello", add_special_tokens=True)) == 3

    def test_skip_special_tokens_default(self, word_level_json):
        from polytok import Tokenizer

        config = TokenizerConfig(skip_special_tokens=False)
        with Tokenizer.from_blob_json(word_level_json, config=config) as tok:
            assert str(tok.decode([2, 4, 3])) == "[CLS] hello [SEP]"

    def test_padding_defaults_reach_batches(self, trie_vocab):
        from polytok import Tokenizer

        config = TokenizerConfig(padding_side="left", pad_token_id=7)
        tok = Tokenizer.from_vocab(trie_vocab, config=config)
        batch = tok.encode_batch(["the", "the cat"])

        assert batch.padding_side == "left"
        assert batch.input_ids.tolist() == [[7, 257], [257, 259]]

    def test_config_setter_validates(self, trie_tokenizer):
        with pytest.raises(ValidationError):
            trie_tokenizer.config = {"add_special_tokens": False}

    def test_unknown_call_kwargs_warn(self, trie_tokenizer, caplog):
        import logging

        with caplog.at_level(logging.WARNING, logger="polytok"):
            trie_tokenizer("the", return_tensors="np")

        assert any("Unknown argument" in r.getMessage() for r in caplog.records)


class EchoTokenizer(Tokenizer):
    """Minimal backend: one id per byte, no vocabulary enumeration."""

    backend = "echo"

    def _encode(self, text, add_special_tokens):
        return Encoding(ids=TokenArray.from_list(text.encode()))

    def _decode(self, ids, skip_special_tokens):
        return Decoding.from_bytes(bytes(int(i) for i in ids))

    def _get_vocab_size(self):
        return 256

    def _id_to_token(self, token_id):
        return Decoding.from_bytes(bytes([token_id])) if token_id < 256 else Decoding.empty()

    def _token_to_id(self, token):
        data = token.encode() if isinstance(token, str) else token
        return data[0] if len(data) == 1 else NOT_FOUND


class TestMinimalBackend:
    """Defaults the facade provides to a backend with only the required primitives."""

    def test_batch_defaults(self):
        tok = EchoTokenizer()

        assert tok.encode_batch(["ab", "c"]).input_ids.tolist() == [[97, 98], [99, 0]]
        assert [str(d) for d in tok.decode_batch([[104, 105], [33]])] == ["hi", "!"]

    def test_get_vocab_unsupported(self):
        """A missing capability fails eagerly instead of returning a partial result."""
        tok = EchoTokenizer()

        with pytest.raises(UnsupportedOperationError) as exc_info:
            tok.get_vocab()

        assert exc_info.value.code == "UNSUPPORTED_OPERATION"
        assert exc_info.value.details["backend"] == "echo"
        assert isinstance(exc_info.value, NotImplementedError)
