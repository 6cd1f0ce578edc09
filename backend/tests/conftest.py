import os

# Must be set before the app package creates its engine and settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ANTHROPIC_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

from app import models  # noqa: F401
from app.api.deps import get_llm_client, get_registry_client
from app.database import Base, SessionLocal, engine
from app.main import app
from app.pipeline.rate_limit import RateLimiter
from fakes import FakeAnthropic, FakeRegistry


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def llm():
    return FakeAnthropic()


@pytest.fixture
def client(db, registry, llm):
    app.dependency_overrides[get_registry_client] = lambda: registry
    app.dependency_overrides[get_llm_client] = lambda: llm
    app.state.rate_limiter = RateLimiter()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
