"""Shared pytest fixtures."""

import pytest

from refdesk.agent import resilience


@pytest.fixture(autouse=True)
def _fresh_circuit_breakers():
    """Circuit breakers are process-wide; start every test from an empty registry."""
    resilience._CIRCUIT_BREAKERS.clear()  # pylint: disable=protected-access
    yield
    resilience._CIRCUIT_BREAKERS.clear()  # pylint: disable=protected-access
