"""Configuration for tokenizer call defaults."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Literal

from ._native import UINT32_MAX
from .exceptions import ValidationError

PaddingSide = Literal["left", "right"]

__all__ = ["TokenizerConfig", "PaddingSide"]


@dataclass
class TokenizerConfig:
    """
    Defaults applied when a tokenizer call leaves an option as ``None``.

    Attributes
    ----------
    add_special_tokens : bool, default True
        Whether ``encode`` adds the backend's special tokens (BOS/EOS,
        template tokens).
    skip_special_tokens : bool, default True
        Whether ``decode`` drops special tokens from the output text.
    padding_side : {"right", "left"}, default "right"
        Side on which short rows of a padded batch are filled.
    pad_token_id : int, default 0
        Value used to fill padded positions of ``input_ids``.

    Example
    -------
    >>> config = TokenizerConfig(pad_token_id=1)
    >>> left = config.override(padding_side="left")
    >>> tok = Tokenizer.from_vocab(vocab, config=left)
    """

    add_special_tokens: bool = True
    skip_special_tokens: bool = True
    padding_side: PaddingSide = "right"
    pad_token_id: int = 0

    def __post_init__(self) -> None:
        if self.padding_side not in ("left", "right"):
            raise ValidationError(
                f"padding_side must be 'left' or 'right', got {self.padding_side!r}",
                details={"param": "padding_side", "value": self.padding_side},
            )
        if not isinstance(self.pad_token_id, int) or not 0 <= self.pad_token_id <= UINT32_MAX:
            raise ValidationError(
                f"pad_token_id must be an unsigned 32-bit integer, got {self.pad_token_id!r}",
                details={"param": "pad_token_id", "value": self.pad_token_id},
            )

    def override(self, **kwargs: object) -> TokenizerConfig:
        """
        Create a new config with specified fields overridden.

        The original config is unchanged.

        Raises
        ------
        ValidationError
            If a field name is unknown or a value is invalid.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(kwargs) - known)
        if unknown:
            raise ValidationError(
                f"Unknown TokenizerConfig field(s): {', '.join(unknown)}",
                details={"unknown": unknown},
            )
        return replace(self, **kwargs)
