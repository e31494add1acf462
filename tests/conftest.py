import pytest
from helpers import Harness, build_harness, voice_state


@pytest.fixture
def harness() -> Harness:
    h = build_harness()
    yield h
    h.db.close()


@pytest.fixture
def make_state():
    return voice_state
