import pytest

from agent_guard.audit import MemoryAuditSink
from agent_guard.catalog import CatalogStore

from .fakes import FakeClock, MemoryMessageStore, write_catalog


@pytest.fixture()
def catalog_paths(tmp_path):
    return write_catalog(tmp_path)


@pytest.fixture()
def catalog_store(catalog_paths):
    return CatalogStore(*catalog_paths)


@pytest.fixture()
def audit():
    return MemoryAuditSink()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def message_store():
    return MemoryMessageStore()
