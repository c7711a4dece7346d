import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("CLOUD_API_KEY", "test-cloud-key")
os.environ.setdefault("LOGGING_LEVEL", "DEBUG")

import pytest
import pytest_asyncio
from core.orm import Database
from services.meeting_workflow import MeetingWorkflow
from services.repository import MeetingRepository

from lib.fakes import DummyBlobStore, DummyOcr, DummySummarizer, DummyTranslator


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'meetings.db'}")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def repository(database) -> MeetingRepository:
    return MeetingRepository(database)


@pytest.fixture
def translator() -> DummyTranslator:
    return DummyTranslator()


@pytest.fixture
def summarizer() -> DummySummarizer:
    return DummySummarizer()


@pytest.fixture
def ocr() -> DummyOcr:
    return DummyOcr()


@pytest.fixture
def blob_store() -> DummyBlobStore:
    return DummyBlobStore()


@pytest.fixture
def workflow(repository, translator, summarizer, ocr, blob_store) -> MeetingWorkflow:
    return MeetingWorkflow(
        repository=repository,
        translator=translator,
        summarizer=summarizer,
        ocr=ocr,
        blob_store=blob_store,
    )


@pytest_asyncio.fixture
async def user(repository):
    return await repository.upsert_user("oauth|ada", name="Ada", email="ada@example.com")


def pytest_configure(config):
    config.addinivalue_line("markers", "api: exercises the HTTP layer through TestClient")
