"""Shared test fixtures for health-jobs."""
import asyncio

import pytest
import pytest_asyncio

from channels.email_adapter import InMemoryEmailAdapter
from config.settings import AppConfig, DatabaseConfig, reset_settings
from job_queue.dispatch_queue import InMemoryDispatchQueue
from job_queue.producer import EmailJobs
from mail_jobs.dispatcher import JobDispatcher
from utils.observability import Observability


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    for var in ("NUM_WORKERS", "WORKER_ID", "APP_ENV", "HEALTH_JOBS_CONFIG", "OTLP_ENDPOINT"):
        monkeypatch.delenv(var, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        name="DimDim Health",
        environment="test",
        frontend_url="https://app.example.com",
        base_url="https://api.example.com",
    )


@pytest.fixture
def obs() -> Observability:
    return Observability(service="health-jobs-test")


@pytest.fixture
def queue() -> InMemoryDispatchQueue:
    return InMemoryDispatchQueue(dead_letter_key="jobs:dead")


@pytest.fixture
def adapter() -> InMemoryEmailAdapter:
    return InMemoryEmailAdapter()


@pytest.fixture
def dispatcher(adapter, app_config, obs) -> JobDispatcher:
    return JobDispatcher(adapter, app=app_config, observability=obs)


@pytest.fixture
def email_jobs(queue, obs) -> EmailJobs:
    return EmailJobs(queue, observability=obs)


@pytest.fixture
def stop_event() -> asyncio.Event:
    return asyncio.Event()


@pytest_asyncio.fixture
async def sessions(tmp_path):
    """Session factory over a fresh SQLite file with every table created."""
    from database.session import close_db, create_engine, create_session_factory, init_db

    engine = create_engine(DatabaseConfig(url=f"sqlite:///{tmp_path}/jobs.db"))
    await init_db(engine)
    yield create_session_factory(engine)
    await close_db(engine)
