"""
TokenArray, Decoding and Encoding container tests.

Python-owned containers are exercised directly; foreign-backed ones through
the HuggingFace backend.
"""

import numpy as np
import pytest

from polytok.exceptions import StateError
from polytok.tokenizer import Decoding, Encoding, TokenArray


class TestTokenArraySequence:
    """Sequence protocol on a Python-owned TokenArray."""

    def test_basic_access(self):
        ids = TokenArray.from_list([10, 20, 30, 20])

        assert len(ids) == 4
        assert ids[0] == 10
        assert ids[-1] == 20
        assert list(ids) == [10, 20, 30, 20]
        assert 30 in ids
        assert 99 not in ids
        assert ids.index(20) == 1
        assert ids.count(20) == 2

    def test_index_out_of_range(self):
        with pytest.raises(IndexError):
            TokenArray.from_list([1])[5]

    def test_slice_is_copy(self):
        ids = TokenArray.from_list([1, 2, 3, 4])
        part = ids[1:3]

        assert isinstance(part, TokenArray)
        assert part.tolist() == [2, 3]
        assert part.address != ids.address

    def test_equality(self):
        ids = TokenArray.from_list([1, 2])

        assert ids == [1, 2]
        assert ids == (1, 2)
        assert ids == TokenArray.from_list([1, 2])
        assert ids != [2, 1]

    def test_unhashable(self):
        with pytest.raises(TypeError):
            hash(TokenArray.from_list([1]))

    def test_repr_truncates(self):
        text = repr(TokenArray.from_list(range(20)))

        assert "..." in text
        assert "len=20" in text

    def test_close(self):
        ids = TokenArray.from_list([1, 2])
        ids.close()

        with pytest.raises(StateError) as exc_info:
            ids.tolist()
        assert exc_info.value.code == "STATE_CLOSED"
        assert "closed" in repr(ids)


class TestTokenArrayInterop:
    """NumPy and DLPack export."""

    def test_numpy_zero_copy(self):
        ids = TokenArray.from_list([5, 6, 7])
        arr = np.asarray(ids)

        assert arr.dtype == np.uint32
        assert arr.tolist() == [5, 6, 7]
        assert arr.ctypes.data == ids.address

    def test_numpy_empty(self):
        assert np.asarray(TokenArray.from_list([])).shape == (0,)

    def test_foreign_numpy_view(self, hf_tokenizer):
        enc = hf_tokenizer.encode("hello world")
        arr = np.asarray(enc.ids)

        assert arr.ctypes.data == enc.ids.address
        assert arr.tolist() == enc.ids.tolist()

    def test_dlpack_torch(self, hf_tokenizer):
        torch = pytest.importorskip("torch")

        ids = hf_tokenizer.encode("the cat").ids
        tensor = torch.from_dlpack(ids)

        assert tensor.tolist() == ids.tolist()

    def test_dlpack_device(self):
        assert TokenArray.from_list([1]).__dlpack_device__() == (1, 0)


class TestDecoding:
    """Decoding text views."""

    def test_python_owned(self):
        text = Decoding.from_bytes("héllo".encode())

        assert not text.is_view
        assert text == "héllo"
        assert text == "héllo".encode()
        assert len(text) == 6
        assert bytes(text) == "héllo".encode()
        assert str(text) == "héllo"

    def test_invalid_utf8_kept_exactly(self):
        """Partial UTF-8 is replaced in text but exact in bytes."""
        text = Decoding.from_bytes(b"\xc3")

        assert text.tobytes() == b"\xc3"
        assert text.text == "�"

    def test_empty(self):
        assert Decoding.empty() == ""
        assert len(Decoding.empty()) == 0

    def test_hash_matches_text(self):
        assert {Decoding.from_bytes(b"a"): 1}[Decoding.from_bytes(b"a")] == 1


class TestEncoding:
    """Encoding record."""

    def test_optional_fields(self):
        enc = Encoding(ids=TokenArray.from_list([1, 2]))

        assert len(enc) == 2
        assert list(enc) == [1, 2]
        assert enc.to_dict() == {"ids": [1, 2]}

    def test_to_dict_all_fields(self, hf_tokenizer):
        out = hf_tokenizer.encode("cat").to_dict()

        assert set(out) == {"ids", "type_ids", "tokens", "special_tokens_mask", "attention_mask"}
        assert out["tokens"] == ["[CLS]", "cat", "[SEP]"]

    def test_equality(self):
        a = Encoding(ids=TokenArray.from_list([1]))
        b = Encoding(ids=TokenArray.from_list([1]))

        assert a == b
        assert a != Encoding(ids=TokenArray.from_list([2]))

    def test_context_manager_closes_owner(self, hf_tokenizer):
        with hf_tokenizer.encode("hello") as enc:
            owner = enc.owner
            assert owner.alive

        assert not owner.alive

    def test_close_python_owned_is_noop(self, trie_tokenizer):
        """Without a foreign owner, close() leaves the views readable."""
        enc = trie_tokenizer.encode("the cat")
        expected = enc.ids.tolist()
        enc.close()

        assert enc.owner is None
        assert enc.ids.tolist() == expected
