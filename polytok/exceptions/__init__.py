"""
Polytok exceptions.

This module defines the exception hierarchy for polytok:

    PolytokError (base)
    ├── IntegrityError - Vocabulary cannot answer a lookup that must succeed
    ├── UnsupportedOperationError - Backend lacks the requested capability
    ├── ForeignCallError - Engine reported a failure
    ├── TokenizerError - Errors during encode/decode
    ├── InteropError - NumPy/DLPack export errors
    ├── StateError - Invalid object state errors
    └── ValidationError - Invalid parameter value
"""

from .exceptions import (
    ForeignCallError,
    IntegrityError,
    InteropError,
    PolytokError,
    StateError,
    TokenizerError,
    UnsupportedOperationError,
    ValidationError,
)

# =============================================================================
# Public API - See polytok/__init__.py for the top-level re-exports
# =============================================================================
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
