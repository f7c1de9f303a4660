"""
SentencePiece backend tests.

Uses a character-level model trained in memory by the ``sentencepiece_model``
fixture, so no model files are needed.
"""

import pytest

from polytok import NOT_FOUND, Tokenizer, TokenizerConfig
from polytok.exceptions import ForeignCallError, TokenizerError
from tests.tokenizer.conftest import SP_SENTENCES

pytest.importorskip("sentencepiece")


class TestConstruction:
    def test_from_blob(self, sentencepiece_model):
        with Tokenizer.from_blob_sentencepiece(sentencepiece_model) as tok:
            assert tok.backend == "sentencepiece"
            assert tok.get_vocab_size() > 3

    def test_from_path(self, tmp_path, sentencepiece_model):
        path = tmp_path / "sp.model"
        path.write_bytes(sentencepiece_model)

        with Tokenizer.from_blob_sentencepiece(path) as tok:
            assert tok.get_vocab_size() > 3

    def test_garbage_blob(self):
        """Bytes that are not a ModelProto raise ForeignCallError."""
        with pytest.raises(ForeignCallError) as exc_info:
            Tokenizer.from_blob_sentencepiece(b"definitely not a model")

        assert exc_info.value.code == "MODEL_LOAD_FAILED"


class TestEncodeDecode:
    def test_bos_eos_added(self, sp_tokenizer):
        """add_special_tokens wraps the ids in BOS/EOS."""
        processor = sp_tokenizer.processor
        enc = sp_tokenizer.encode("hello")
        ids = enc.ids.tolist()

        assert ids[0] == processor.bos_id()
        assert ids[-1] == processor.eos_id()
        assert enc.special_tokens_mask.tolist() == [1] + [0] * (len(ids) - 2) + [1]
        assert enc.attention_mask.tolist() == [1] * len(ids)
        assert len(enc.tokens) == len(ids)

    def test_without_special_tokens(self, sp_tokenizer):
        plain = sp_tokenizer.encode("hello", add_special_tokens=False).ids.tolist()
        wrapped = sp_tokenizer.encode("hello").ids.tolist()

        assert wrapped[1:-1] == plain

    def test_config_reproduces_bare_engine_ids(self, sentencepiece_model):
        """With add_special_tokens=False as the default, encode matches the processor exactly."""
        config = TokenizerConfig(add_special_tokens=False)
        with Tokenizer.from_blob_sentencepiece(sentencepiece_model, config=config) as tok:
            for text in set(SP_SENTENCES):
                assert tok.encode(text).ids.tolist() == list(tok.processor.EncodeAsIds(text))

    def test_round_trip(self, sp_tokenizer):
        for text in ["hello world", "the cat sat on the mat", "hello again, world!"]:
            assert sp_tokenizer.decode(sp_tokenizer.encode(text).ids) == text

    def test_decode_keeps_control_pieces(self, sp_tokenizer):
        """skip_special_tokens=False splices <s> and </s> back in."""
        ids = sp_tokenizer.encode("hello").ids
        text = str(sp_tokenizer.decode(ids, skip_special_tokens=False))

        assert text.startswith("<s>")
        assert text.endswith("</s>")
        assert "hello" in text

    def test_out_of_range_id(self, sp_tokenizer):
        """Engine errors surface as TokenizerError."""
        with pytest.raises(TokenizerError) as exc_info:
            sp_tokenizer.decode([10_000_000])

        assert exc_info.value.code == "DECODE_FAILED"

    def test_results_are_python_owned(self, sp_tokenizer):
        enc = sp_tokenizer.encode("hello")

        assert enc.owner is None
        assert enc.ids.owner is None
        assert not sp_tokenizer.decode(enc.ids).is_view


class TestVocabulary:
    def test_token_to_id_unknown(self, sp_tokenizer):
        assert sp_tokenizer.token_to_id("not-a-piece") == NOT_FOUND

    def test_unk_piece_has_real_id(self, sp_tokenizer):
        """The <unk> piece itself is not reported as missing."""
        processor = sp_tokenizer.processor
        assert sp_tokenizer.token_to_id("<unk>") == processor.unk_id()

    def test_id_to_token(self, sp_tokenizer):
        processor = sp_tokenizer.processor
        piece_id = processor.PieceToId("h")

        assert sp_tokenizer.id_to_token(piece_id) == "h"
        assert sp_tokenizer.id_to_token(10_000_000) == ""

    def test_get_vocab(self, sp_tokenizer):
        vocab = sp_tokenizer.get_vocab()

        assert len(vocab) == sp_tokenizer.get_vocab_size()
        assert vocab["<unk>"] == sp_tokenizer.processor.unk_id()
        assert sp_tokenizer.token_to_id("h") == vocab["h"]
