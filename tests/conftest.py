"""
Shared pytest fixtures for store and engine tests.
"""

import os
import tempfile

import pytest
import pytest_asyncio

from kvstore import AsyncStore, new_store
from kvstore.engine import BTreeFile


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db_path(temp_dir):
    """Provide a path for the B+tree file."""
    return os.path.join(temp_dir, "store.db")


@pytest.fixture
def btree(db_path):
    """Provide an open BTreeFile."""
    db = BTreeFile.open_at(db_path)
    yield db
    db.close()


@pytest.fixture
def store(db_path):
    """Provide an open store from the default engine."""
    with new_store("btree", db_path) as s:
        yield s


@pytest_asyncio.fixture
async def async_store(db_path):
    """Provide an open AsyncStore."""
    async with AsyncStore(new_store("btree", db_path)) as s:
        yield s


@pytest.fixture
def sample_keys():
    """Keys from two entity kinds sharing one namespace."""
    return [b"user:1", b"user:2", b"group:1"]
