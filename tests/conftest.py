"""
Shared fixtures: an isolated storage root per test plus the fakes from
fakes.py wired into the real core services.
"""

import logging

import pytest
import pytest_asyncio

from services.progress.ProgressTracker import ProgressTracker
from services.topics.TopicManager import TopicManager
from shared.helper.EventBus import EventBus
from shared.helper.HelperConfig import HelperConfig

from fakes import FakeEmbedClient, FakeVectorStore


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Point every path at the test's tmp dir and use small, fast settings."""
    for key in ("COMMON_DATABASE_PATH", "WATCH_FOLDERS", "WORKSPACE_ROOT", "EMBED_MODEL", "RETRIEVAL_STRATEGY", "INCLUDE_EXTENSIONS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ROOT_DIR", str(tmp_path))
    monkeypatch.setenv("DATABASE_DIR", str(tmp_path / "database"))
    monkeypatch.setenv("CHUNK_SIZE", "100")
    monkeypatch.setenv("CHUNK_OVERLAP", "0")
    monkeypatch.setenv("PROGRESS_COMPLETE_DELAY", "0")
    monkeypatch.setenv("WATCH_DEBOUNCE_SECONDS", "0.05")
    return tmp_path


@pytest.fixture
def helper_config(env) -> HelperConfig:
    return HelperConfig(logger=logging.getLogger("localrag.tests"))


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus(logger=logging.getLogger("localrag.tests"))


@pytest.fixture
def embed_client(helper_config) -> FakeEmbedClient:
    return FakeEmbedClient(helper_config)


@pytest.fixture
def progress(helper_config, event_bus) -> ProgressTracker:
    return ProgressTracker(helper_config=helper_config, event_bus=event_bus)


@pytest.fixture
def make_topic_manager(helper_config, embed_client, progress, event_bus):
    def _make(**kwargs) -> TopicManager:
        params = {
            "helper_config": helper_config,
            "embed_client": embed_client,
            "progress_tracker": progress,
            "event_bus": event_bus,
            "store_class": FakeVectorStore,
        }
        params.update(kwargs)
        return TopicManager(**params)

    return _make


@pytest_asyncio.fixture
async def topic_manager(make_topic_manager) -> TopicManager:
    manager = make_topic_manager()
    await manager.ensure_initialized()
    yield manager
    manager.dispose()
