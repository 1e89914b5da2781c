"""
Test utilities for AtFlow.

This package contains shared testing utilities: the marker embedding used to
write input trees as Python snippets, and helpers for observing streams.
"""

from .markers import MarkerEmbedding, parse, parse_expression
from .streams import assert_no_observers, recorder

__all__ = [
    "MarkerEmbedding",
    "parse",
    "parse_expression",
    "assert_no_observers",
    "recorder",
]
