import pytest

from ring_helpers import RingHarness


@pytest.fixture
def harness():
    """Fresh in-memory engine with the test tokens registered."""
    return RingHarness()
