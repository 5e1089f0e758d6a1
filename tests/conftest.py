"""
Pytest configuration and fixtures for Stream Scene API tests.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from streamscene.database import Base, get_db
from streamscene.limiter import limiter
from streamscene.main import app
from streamscene.models import User, SocialAccountToken
from streamscene.auth import get_password_hash, create_access_token
from streamscene.worker.threads_api import PublishResult, ThreadsAPIError, get_threads_client

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    yield _test_session


class FakeThreadsClient:
    """Stands in for ThreadsClient; records calls and can be told to fail."""

    def __init__(self):
        self.calls = []
        self.errors = []  # raised in order, one per call, before succeeding

    def fail_with(self, *errors: ThreadsAPIError):
        self.errors.extend(errors)

    def create_and_publish(self, account_id, access_token, text=None, image_urls=None, video_url=None):
        self.calls.append({
            "account_id": account_id,
            "access_token": access_token,
            "text": text,
            "image_urls": image_urls,
            "video_url": video_url,
        })
        if self.errors:
            raise self.errors.pop(0)
        return PublishResult(
            post_id=f"1789{len(self.calls):04d}",
            creation_id=f"container_{len(self.calls)}",
            media_type="VIDEO" if video_url else "IMAGE" if image_urls else "TEXT",
        )


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    Base.metadata.create_all(bind=engine)
    _test_session = TestingSessionLocal()
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def threads_client(db):
    """Fake Threads client injected into the routes."""
    fake = FakeThreadsClient()
    app.dependency_overrides[get_threads_client] = lambda: fake
    return fake


@pytest.fixture(scope="function")
def client(db, threads_client):
    """Create a test client."""
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="function")
def test_user(db):
    """Create a test user."""
    user = User(
        email="test@example.com",
        hashed_password=get_password_hash("testpassword123"),
        display_name="Test User",
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def auth_headers(test_user):
    """Get auth headers for the test user."""
    token = create_access_token({"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def threads_token(db, test_user):
    """A stored Threads credential for account 123."""
    token = SocialAccountToken(
        user_id=test_user.id,
        account_id="123",
        username="stream.scene",
        access_token="threads-long-lived-token",
    )
    db.add(token)
    db.commit()
    db.refresh(token)
    return token
