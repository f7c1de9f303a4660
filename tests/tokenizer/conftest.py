"""
Tokenizer-specific fixtures.

Provides fixtures for tokenizer testing including:
- A small WordLevel ``tokenizer.json`` with [CLS]/[SEP] post-processing
- Byte-level BPE vocab/merges blobs
- A character SentencePiece model trained in memory
- Trie vocabularies (dict and msgpack blob)
- One fixture per backend, parametrized for contract tests
"""

import io

import pytest

# =============================================================================
# HuggingFace
# =============================================================================

WORD_VOCAB = {
    "[PAD]": 0,
    "[UNK]": 1,
    "[CLS]": 2,
    "[SEP]": 3,
    "hello": 4,
    "world": 5,
    "the": 6,
    "cat": 7,
    "sat": 8,
    "on": 9,
    "mat": 10,
    ",": 11,
    ".": 12,
    "!": 13,
}

CLS_ID = WORD_VOCAB["[CLS]"]
SEP_ID = WORD_VOCAB["[SEP]"]
UNK_ID = WORD_VOCAB["[UNK]"]


def build_word_level_json() -> str:
    """Serialize a WordLevel tokenizer that wraps single inputs in [CLS] ... [SEP]."""
    from tokenizers import Tokenizer, models, pre_tokenizers, processors

    tokenizer = Tokenizer(models.WordLevel(vocab=WORD_VOCAB, unk_token="[UNK]"))
    tokenizer.pre_tokenizer = pre_tokenizers.Whitespace()
    tokenizer.add_special_tokens(["[PAD]", "[UNK]", "[CLS]", "[SEP]"])
    tokenizer.post_processor = processors.TemplateProcessing(
        single="[CLS] $A [SEP]",
        pair="[CLS] $A [SEP] $B:1 [SEP]:1",
        special_tokens=[("[CLS]", CLS_ID), ("[SEP]", SEP_ID)],
    )
    return tokenizer.to_str()


@pytest.fixture(scope="session")
def word_level_json():
    """tokenizer.json contents for the WordLevel test tokenizer."""
    return build_word_level_json()


@pytest.fixture(scope="session")
def word_level_file(tmp_path_factory, word_level_json):
    """Path to the WordLevel tokenizer.json on disk."""
    path = tmp_path_factory.mktemp("hf") / "tokenizer.json"
    path.write_text(word_level_json, encoding="utf-8")
    return path


@pytest.fixture(scope="module")
def hf_tokenizer(word_level_json):
    """WordLevel HFTokenizer shared by a test module."""
    from polytok import Tokenizer

    tok = Tokenizer.from_blob_json(word_level_json)
    yield tok
    tok.close()


BPE_VOCAB_JSON = '{"h": 0, "e": 1, "l": 2, "o": 3, "he": 4, "ll": 5, "hell": 6, "hello": 7}'
BPE_MERGES_TXT = "#version: 0.2\nh e\nl l\nhe ll\nhell o\n"
BPE_ADDED_TOKENS_JSON = '{"<|end|>": 8}'


@pytest.fixture(scope="session")
def byte_level_bpe_blobs():
    """(vocab.json, merges.txt, added_tokens.json) contents."""
    return BPE_VOCAB_JSON, BPE_MERGES_TXT, BPE_ADDED_TOKENS_JSON


# =============================================================================
# SentencePiece
# =============================================================================

SP_SENTENCES = [
    "hello world",
    "the cat sat on the mat",
    "a quick brown fox jumps over the lazy dog",
    "pack my box with five dozen liquor jugs",
    "hello again, world!",
] * 20


@pytest.fixture(scope="session")
def sentencepiece_model():
    """Serialized character-level SentencePiece model trained in memory."""
    spm = pytest.importorskip("sentencepiece")

    model = io.BytesIO()
    spm.SentencePieceTrainer.train(
        sentence_iterator=iter(SP_SENTENCES),
        model_writer=model,
        model_type="char",
        vocab_size=100,
        hard_vocab_limit=False,
        character_coverage=1.0,
    )
    return model.getvalue()


@pytest.fixture(scope="module")
def sp_tokenizer(sentencepiece_model):
    """SentencePieceTokenizer shared by a test module."""
    from polytok import Tokenizer

    tok = Tokenizer.from_blob_sentencepiece(sentencepiece_model)
    yield tok
    tok.close()


# =============================================================================
# Trie
# =============================================================================


def build_trie_vocab() -> dict[int, bytes]:
    """Every single byte (ids 1..256) plus a few multi-byte tokens."""
    vocab = {byte + 1: bytes([byte]) for byte in range(256)}
    vocab[257] = b"the"
    vocab[258] = b"th"
    vocab[259] = b" cat"
    vocab[260] = "é".encode()
    return vocab


@pytest.fixture(scope="session")
def trie_vocab():
    return build_trie_vocab()


@pytest.fixture(scope="session")
def trie_blob(trie_vocab):
    """msgpack ``{id: token bytes}`` blob."""
    import msgpack

    return msgpack.packb(trie_vocab, use_bin_type=True)


@pytest.fixture(scope="module")
def trie_tokenizer(trie_blob):
    """TrieTokenizer shared by a test module."""
    from polytok import Tokenizer

    tok = Tokenizer.from_blob_trie(trie_blob)
    yield tok
    tok.close()


# =============================================================================
# Any backend
# =============================================================================


@pytest.fixture(params=["huggingface", "sentencepiece", "trie"])
def any_tokenizer(request):
    """Each backend in turn (function-scoped, closed after the test)."""
    from polytok import Tokenizer

    if request.param == "huggingface":
        tok = Tokenizer.from_blob_json(build_word_level_json())
    elif request.param == "sentencepiece":
        tok = Tokenizer.from_blob_sentencepiece(request.getfixturevalue("sentencepiece_model"))
    else:
        tok = Tokenizer.from_vocab(build_trie_vocab())
    yield tok
    tok.close()
