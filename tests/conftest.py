"""
Shared test fixtures for the Tessera test suite.

Every test starts from an empty model registry, alias registry, comment
list and filter chain list, with the process-wide settings restored.
"""

import pytest
import pytest_asyncio

from tessera import settings
from tessera.db import (
    clear_query_comments,
    close_databases,
    register_database,
    reset_alias_cache,
    sync_db,
)
from tessera.models import bootstrap, register_model, reset_model_cache
from tessera.models.utils import get_name_strategy, set_name_strategy
from tessera.orm import clear_global_filter_chains, new_orm

from orm_models import ALL_MODELS


@pytest.fixture(autouse=True)
def reset_orm_state():
    """Isolate global registries and settings between tests."""
    saved = (
        settings.DEBUG,
        settings.DEFAULT_ROWS_LIMIT,
        settings.DEFAULT_RELS_DEPTH,
        settings.DEFAULT_TIME_LOC,
        settings.LOG_FUNC,
    )
    strategy = get_name_strategy()
    reset_model_cache()
    reset_alias_cache()
    clear_query_comments()
    clear_global_filter_chains()
    yield
    reset_model_cache()
    reset_alias_cache()
    clear_query_comments()
    clear_global_filter_chains()
    (
        settings.DEBUG,
        settings.DEFAULT_ROWS_LIMIT,
        settings.DEFAULT_RELS_DEPTH,
        settings.DEFAULT_TIME_LOC,
        settings.LOG_FUNC,
    ) = saved
    set_name_strategy(strategy)


@pytest.fixture
def registered_models():
    """Register and bootstrap the shared test models."""
    register_model(*ALL_MODELS)
    bootstrap()
    return ALL_MODELS


@pytest_asyncio.fixture
async def sqlite_alias(registered_models):
    """``default`` alias on an in-memory SQLite database with the schema created."""
    al = await register_database("default", "sqlite3", ":memory:")
    await sync_db("default")
    yield al
    await close_databases()


@pytest_asyncio.fixture
async def orm(sqlite_alias):
    """Ormer bound to the in-memory ``default`` alias."""
    return new_orm()
