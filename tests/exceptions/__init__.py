"""
Exception handling tests.

Tests for polytok.exceptions module:
- Hierarchy and builtin base classes
- Stable string codes and numeric family codes
- Errors raised across the engine boundary

Maps to: polytok/exceptions/
"""
