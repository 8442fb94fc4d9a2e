"""
Core pytest configuration for the entire test suite.

Only the essentials live here: logging, the database engine and session
fixtures, and the realtime bus. Domain fixtures are in tests/test_fixtures/
and imported at the bottom of this module so every test can use them.
"""

from __future__ import annotations

# -------------------------------
# Early logging tuning (IMPORTANT)
# -------------------------------
# Keep this block above the messenger imports so collection stays quiet.
import logging

NOISY_LOGGERS = (
    "faker",
    "faker.factory",
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "aiosqlite",
    "asyncio",
    "httpx",
)
for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)

import os
from typing import AsyncGenerator

import pytest
from pytest import FixtureRequest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from messenger import models  # noqa: F401 - registers every table on Base.metadata
from messenger.config import get_settings
from messenger.core.logging.builder import setup_logging
from messenger.database.base import Base
from messenger.database.session import build_engine, build_session_factory, create_schema
from messenger.realtime.bus import InMemoryBus
from messenger.store.conversation_store import ConversationStore

settings = get_settings()
logger = logging.getLogger(__name__)


@pytest.fixture(scope="session", autouse=True)
def configure_logging(request: FixtureRequest):
    """
    Install application logging for the whole session and re-attach pytest's
    capture handler (dictConfig removes it) so `caplog.records` keeps working.
    """
    setup_logging(settings)

    caplog_plugin = request.config.pluginmanager.getplugin("logging-plugin")
    handler = getattr(caplog_plugin, "caplog_handler", None)
    if handler is not None:
        logging.getLogger().addHandler(handler)

    yield


# ------------------------------------------------------------------------------------------------
# Test database
# ------------------------------------------------------------------------------------------------

def get_test_database_url() -> str:
    """
    TEST_DATABASE_URL when set (CI against Postgres), otherwise a private
    in-memory SQLite database per test.
    """
    return os.getenv("TEST_DATABASE_URL") or "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(get_test_database_url())
    await create_schema(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(async_engine)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for repository tests; uncommitted work is rolled back afterwards."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ------------------------------------------------------------------------------------------------
# Realtime and store
# ------------------------------------------------------------------------------------------------

@pytest.fixture()
async def bus() -> AsyncGenerator[InMemoryBus, None]:
    bus = InMemoryBus()
    yield bus
    await bus.close()


@pytest.fixture()
def store(session_factory, bus) -> ConversationStore:
    return ConversationStore(session_factory, bus)


# Domain fixtures
from .test_fixtures.repository_fixtures import (  # noqa: E402
    profile_repository,
    conversation_repository,
    member_repository,
    message_repository,
    make_profile,
    make_pet,
)
from .test_fixtures.store_fixtures import (  # noqa: E402
    alice,
    bob,
    carol,
    buddy,
    seeded_conversation,
)
from .test_fixtures.client_fixtures import (  # noqa: E402
    fake_store,
    viewer_id,
    counterpart_id,
    cache,
    gateway,
)
