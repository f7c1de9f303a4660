"""
Polytok exceptions.

This module defines the exception hierarchy for polytok:

    PolytokError (base)
    ├── IntegrityError - Vocabulary cannot answer a lookup that must succeed
    ├── UnsupportedOperationError - Backend lacks the requested capability
    ├── ForeignCallError - Engine reported a failure (bad model blob, etc.)
    ├── TokenizerError - Errors during encode/decode
    ├── InteropError - NumPy/DLPack export errors
    ├── StateError - Invalid object state errors
    └── ValidationError - Invalid parameter value

"Not found" is never an exception: ``token_to_id`` returns ``NOT_FOUND`` and
``HandleRegistry.release`` returns ``False``.

Usage:
    try:
        tok = polytok.Tokenizer.from_blob_sentencepiece(blob)
    except polytok.ForeignCallError as e:
        print(f"Could not load model: {e}")
    except polytok.PolytokError as e:
        # Catch any polytok error with structured details
        print(f"Error {e.code}: {e}")
        print(f"Details: {e.details}")

See Also
--------
    PolytokError : Base exception for all polytok errors.
"""

from typing import Any

__all__ = [
    # Base
    "PolytokError",
    # Vocabulary
    "IntegrityError",
    # Backend capability
    "UnsupportedOperationError",
    # Engine boundary
    "ForeignCallError",
    # Tokenizer
    "TokenizerError",
    # Interop
    "InteropError",
    # State
    "StateError",
    # Validation
    "ValidationError",
]


class PolytokError(Exception):
    """
    Base exception for all polytok errors.

    All polytok-specific exceptions inherit from this class, enabling:
    - Catch-all handling: ``except polytok.PolytokError``
    - Stable string-based error codes for programmatic handling
    - Structured details for debugging and logging

    Attributes
    ----------
    message : str
        Human-readable error description.
    code : str
        Stable, string-based error code (e.g., "TRIE_NO_PREFIX").
        Use this for programmatic error handling.
    details : dict[str, Any]
        Structured context (e.g., {"offset": 3, "backend": "trie"}).
    original_code : int | None
        Numeric code of the error family (for logging).

    Example
    -------
    >>> try:
    ...     trie.find_longest_prefix(b"\\xff")
    ... except polytok.PolytokError as e:
    ...     print(f"Error code: {e.code}")
    ...     print(f"Details: {e.details}")
    Error code: TRIE_NO_PREFIX
    Details: {'offset': 0}
    """

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_code = original_code

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.args[0]!r}, code={self.code!r})"


# =============================================================================
# Vocabulary Errors
# =============================================================================


class IntegrityError(PolytokError, RuntimeError):
    """
    Vocabulary or trie cannot answer a lookup that must always succeed.

    Signals a malformed vocabulary:
    - No vocabulary entry matches at some input position
    - The tokenizer was never populated
    - An empty token string in the vocabulary
    """

    def __init__(
        self,
        message: str,
        code: str = "INTEGRITY_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 100)


# =============================================================================
# Backend Capability Errors
# =============================================================================


class UnsupportedOperationError(PolytokError, NotImplementedError):
    """
    Operation not supported by the active backend.

    Raised eagerly instead of returning a partial result.
    """

    def __init__(
        self,
        message: str,
        code: str = "UNSUPPORTED_OPERATION",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 110)


# =============================================================================
# Engine Boundary Errors
# =============================================================================


class ForeignCallError(PolytokError, RuntimeError):
    """
    Underlying engine reported a failure.

    Raised at construction time so a half-initialized tokenizer is never
    handed out. Common causes:
    - Malformed serialized model or vocabulary blob
    - Missing model file
    - A foreign free routine that failed
    """

    def __init__(
        self,
        message: str,
        code: str = "FOREIGN_CALL_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 120)


# =============================================================================
# Tokenizer Errors
# =============================================================================


class TokenizerError(PolytokError, RuntimeError):
    """
    Error during tokenization.

    Raised when an encode or decode call fails inside an engine.
    """

    def __init__(
        self,
        message: str,
        code: str = "TOKENIZER_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 200)


# =============================================================================
# Interop Errors
# =============================================================================


class InteropError(PolytokError, TypeError):
    """
    NumPy/DLPack interop errors.

    Raised when array interchange fails or is ambiguous:
    - Ambiguous export (a batch holds several arrays)
    - Empty array export
    """

    def __init__(
        self,
        message: str,
        code: str = "INTEROP_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


# =============================================================================
# State Errors
# =============================================================================


class StateError(PolytokError, RuntimeError):
    """
    Invalid object state error.

    Raised when an operation is attempted on an object in an invalid state:
    - Using a closed tokenizer
    - Reading a view whose foreign buffer was already released
    """

    def __init__(
        self,
        message: str,
        code: str = "STATE_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(PolytokError, ValueError):
    """
    Invalid parameter value.

    Raised when an argument is outside the accepted domain, e.g. a token id
    that does not fit in 32 bits or an unknown padding side.
    """

    def __init__(
        self,
        message: str,
        code: str = "INVALID_ARGUMENT",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 901)
