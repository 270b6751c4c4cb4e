"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import build_engine, build_session_maker, create_all_tables
from jobs.store import JobStore
from monitoring.notifier import NotificationService
from monitoring.plugins.registry import PluginRegistry
from monitoring.service import EngineConfig, MonitorService
from monitoring.summarizer import Summarizer, SummaryService
from tests.helpers import TEST_ENCRYPTION_KEY, RecordingNotifier

# The API must not start the scheduler/worker pool against the real database
settings.ENABLE_BACKGROUND_WORKERS = False
settings.CHANNEL_ENCRYPTION_KEY = TEST_ENCRYPTION_KEY


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite engine so separate sessions see each other's commits"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return build_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def job_store(session_maker):
    return JobStore(session_maker)


# ============================================================================
# Engine collaborators
# ============================================================================

@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def notification_service(session_maker, notifier):
    return NotificationService(
        session_maker,
        overrides={"webhook": notifier},
        encryption_key=TEST_ENCRYPTION_KEY,
    )


@pytest.fixture
def engine_config():
    return EngineConfig(notify_on_first_snapshot=False, keep_snapshots=20, keep_changes=20)


@pytest.fixture
def build_service(db_session, notification_service, engine_config):
    """Factory: MonitorService over the test session with fakes plugged in"""

    def _build(fetcher, summarizer: Optional[Summarizer] = None, config=None, registry=None):
        return MonitorService(
            db_session,
            fetcher=fetcher,
            summary_service=SummaryService(summarizer=summarizer, enabled=summarizer is not None),
            notification_service=notification_service,
            config=config or engine_config,
            registry=registry if registry is not None else PluginRegistry(),
        )

    return _build
