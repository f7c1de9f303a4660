"""
Root pytest configuration.

The backend fixtures (HF word-level tokenizer, SentencePiece model, trie
vocabulary) live in tests/tokenizer/conftest.py but are also used by the
memory and exceptions tests, so they are registered here as a plugin.
"""

pytest_plugins = ["tests.tokenizer.conftest"]
