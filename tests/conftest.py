import pytest

from ledger_match.config import MatchConfig
from ledger_match.store.blobs import MemoryBlobStore
from ledger_match.store.memory import InMemoryStore


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def config():
    return MatchConfig()
