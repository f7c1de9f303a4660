"""
SentencePiece backend.

Wraps ``sentencepiece.SentencePieceProcessor`` loaded from a serialized model.
Results are Python-owned: the processor hands back Python lists and strings,
so nothing here goes through the handle registry.
"""

from __future__ import annotations

import numpy as np
import sentencepiece as spm

from .._logging import scoped_logger
from .._native import NOT_FOUND
from ..config import TokenizerConfig
from ..exceptions import ForeignCallError, IntegrityError
from .decoding import Decoding
from .encoding import Encoding
from .token_array import TokenArray
from .tokenizer import Tokenizer

__all__ = ["SentencePieceTokenizer"]

logger = scoped_logger("tokenizer")


def _load_failed(message: str, **details) -> ForeignCallError:
    return ForeignCallError(
        message,
        code="MODEL_LOAD_FAILED",
        details={"backend": SentencePieceTokenizer.backend, **details},
    )


class SentencePieceTokenizer(Tokenizer):
    """
    Tokenizer backed by a SentencePiece model.

    ``add_special_tokens`` wraps the ids in BOS/EOS when the model defines
    them. ``skip_special_tokens=False`` keeps control pieces (``<s>``,
    ``</s>``) in decoded text.
    """

    __slots__ = ("_processor",)

    backend = "sentencepiece"

    def __init__(self, processor: spm.SentencePieceProcessor, config: TokenizerConfig | None = None) -> None:
        super().__init__(config)
        self._processor = processor

    @classmethod
    def from_serialized_proto(cls, blob: bytes, config: TokenizerConfig | None = None) -> SentencePieceTokenizer:
        """
        Load a serialized ``ModelProto`` (the contents of a ``.model`` file).

        Raises
        ------
            ForeignCallError: If the engine rejects the blob (code ``MODEL_LOAD_FAILED``).
        """
        processor = spm.SentencePieceProcessor()
        try:
            loaded = processor.LoadFromSerializedProto(bytes(blob))
        except Exception as exc:
            raise _load_failed(
                f"Failed to load SentencePiece model: {exc}", error_type=type(exc).__name__
            ) from exc
        if loaded is False or processor.GetPieceSize() <= 0:
            raise _load_failed("SentencePiece model could not be loaded")
        logger.debug(
            "Loaded SentencePiece model",
            extra={"backend": cls.backend, "pieces": processor.GetPieceSize()},
        )
        return cls(processor, config=config)

    @property
    def processor(self) -> spm.SentencePieceProcessor:
        self._ensure_open()
        return self._processor

    def _special_ids(self) -> tuple[int, int]:
        return self._processor.bos_id(), self._processor.eos_id()

    def _encode(self, text: str, add_special_tokens: bool) -> Encoding:
        processor = self._processor
        ids = list(processor.EncodeAsIds(text))
        special = [0] * len(ids)
        if add_special_tokens:
            bos, eos = self._special_ids()
            if bos >= 0:
                ids.insert(0, bos)
                special.insert(0, 1)
            if eos >= 0:
                ids.append(eos)
                special.append(1)
        return Encoding(
            ids=TokenArray.from_list(ids),
            tokens=[Decoding.from_bytes(processor.IdToPiece(i).encode("utf-8")) for i in ids],
            special_tokens_mask=TokenArray.from_list(special),
            attention_mask=TokenArray.from_list([1] * len(ids)),
        )

    def _decode(self, ids: np.ndarray, skip_special_tokens: bool) -> Decoding:
        processor = self._processor
        values = [int(i) for i in ids]
        if skip_special_tokens:
            return Decoding.from_bytes(processor.DecodeIds(values).encode("utf-8"))

        # Control pieces decode to nothing; splice their surface form back in
        parts: list[str] = []
        run: list[int] = []
        for token_id in values:
            if processor.IsControl(token_id):
                if run:
                    parts.append(processor.DecodeIds(run))
                    run = []
                parts.append(processor.IdToPiece(token_id))
            else:
                run.append(token_id)
        if run:
            parts.append(processor.DecodeIds(run))
        return Decoding.from_bytes("".join(parts).encode("utf-8"))

    def _get_vocab_size(self) -> int:
        size = self._processor.GetPieceSize()
        if size <= 0:
            raise IntegrityError(
                "SentencePiece model has no pieces",
                code="VOCAB_EMPTY",
                details={"backend": self.backend},
            )
        return size

    def _id_to_token(self, token_id: int) -> Decoding:
        if token_id >= self._processor.GetPieceSize():
            return Decoding.empty()
        return Decoding.from_bytes(self._processor.IdToPiece(token_id).encode("utf-8"))

    def _token_to_id(self, token: str | bytes) -> int:
        if isinstance(token, bytes):
            try:
                token = token.decode("utf-8")
            except UnicodeDecodeError:
                return NOT_FOUND
        processor = self._processor
        token_id = processor.PieceToId(token)
        # Unknown pieces map to unk_id; only the unk piece itself may return it
        if token_id == processor.unk_id() and token != processor.IdToPiece(token_id):
            return NOT_FOUND
        return token_id

    def _get_vocab(self) -> dict[str, int]:
        processor = self._processor
        return {processor.IdToPiece(i): i for i in range(processor.GetPieceSize())}

    def _close(self) -> None:
        self._processor = None

    def __repr__(self) -> str:
        if self._closed:
            return "SentencePieceTokenizer(closed)"
        return f"SentencePieceTokenizer(vocab_size={self._processor.GetPieceSize()})"
