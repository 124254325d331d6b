"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy.orm import sessionmaker

from taskforge import models  # noqa: F401
from taskforge.database import Base, build_engine
from taskforge.schemas.agents import create_agent_context
from taskforge.services.job_queue import JobQueue
from taskforge.services.monitoring import AgentPerformanceTracker, ExecutionLogStore


@pytest.fixture(scope="function")
def test_engine(tmp_path):
    """Create a test database for each test."""
    # File-backed SQLite so several threads can share it
    engine = build_engine(f"sqlite:///{tmp_path / 'taskforge-test.db'}")
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def job_queue(session_factory):
    return JobQueue(session_factory=session_factory, default_max_retries=3)


@pytest.fixture
def execution_store(session_factory):
    return ExecutionLogStore(session_factory=session_factory)


@pytest.fixture
def tracker():
    return AgentPerformanceTracker()


@pytest.fixture
def context():
    return create_agent_context(owner_id="user-1", project_id="project-1", metadata={"source": "test"})


@pytest.fixture
def no_sleep():
    """Sleep replacement recording requested delays."""
    delays = []

    def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep
