"""
Shared fixtures.

Every test gets its own data directory under pytest's tmp_path,
so databases never leak between tests.
"""

import logging

import pytest
import pytest_asyncio
import structlog

from cost_manager.config import get_settings
from cost_manager.services.storage import TableDeclaration, open_database


DB_NAME = "CostManagerDB"
COST_TABLE = "costItems"


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the configured data directory at tmp_path; undo logging setup."""
    monkeypatch.setenv("COST_MANAGER_STORAGE_DATA_DIR", str(tmp_path))
    get_settings.cache_clear()
    root_level = logging.getLogger().level
    yield
    get_settings.cache_clear()
    structlog.reset_defaults()
    logging.getLogger().setLevel(root_level)


@pytest.fixture
def cost_tables():
    return [TableDeclaration(name=COST_TABLE, primary_key_field="id", auto_increment=True)]


@pytest_asyncio.fixture
async def connection(tmp_path, cost_tables):
    """An open CostManagerDB v1 with the costItems table."""
    conn = await open_database(DB_NAME, 1, cost_tables, data_dir=str(tmp_path))
    yield conn
    await conn.close()


@pytest.fixture
def lunch():
    return {
        "amount": 42.5,
        "category": "Food",
        "description": "lunch",
        "date": "2024-03-15",
    }


@pytest.fixture
def groceries():
    return {
        "amount": 80,
        "category": "Food",
        "description": "groceries",
        "date": "2024-04-01",
    }
