import pytest

from tests.backend.fakes import MemoryDB


@pytest.fixture
def memory_db(monkeypatch):
    return MemoryDB().install(monkeypatch)
