import pytest


@pytest.fixture
def events() -> list[tuple]:
    return []
