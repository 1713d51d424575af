import pytest


@pytest.fixture(autouse=True)
def _fresh_database():
    """Pure tests need no database."""
    yield
