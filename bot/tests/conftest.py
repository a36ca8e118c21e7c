from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from core.config import AppConfig, DiscordConfig, TranscriptConfig
from database.base import Database
from database.migrations.runner import run_migrations
from tests.fakes import FakeClock, FakeNotifier, ManualSleep, ServiceEnv, build_service_env


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        discord=DiscordConfig(token="test-token"),
        transcripts=TranscriptConfig(storage_directory=str(tmp_path / "transcripts")),
    )


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def manual_sleep() -> ManualSleep:
    return ManualSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(url=f"sqlite:///{tmp_path / 'tickets.db'}")
    await database.connect()
    await run_migrations(database)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def env(db: Database, app_config: AppConfig, notifier: FakeNotifier) -> AsyncIterator[ServiceEnv]:
    service_env = build_service_env(db, app_config, notifier)
    yield service_env
    await service_env.scheduler.shutdown()
