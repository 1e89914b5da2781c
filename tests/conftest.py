"""
Shared pytest fixtures and configuration for AtFlow tests.
"""

import pytest

from atflow import LoweringConfig
from utils import parse as parse_snippet


@pytest.fixture
def config():
    """A configuration with a recognisable filename for diagnostics."""
    return LoweringConfig(filename="snippet.py")


@pytest.fixture
def parse():
    """Parse a Python snippet with embedded markers into an input tree."""
    return parse_snippet
