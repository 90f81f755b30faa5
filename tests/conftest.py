"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of crewflow.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

from crewflow.config import CrewflowConfig  # noqa: E402
from crewflow.database.models import Base  # noqa: E402
from crewflow.database.store import SqlStore  # noqa: E402
from crewflow.services.dispatcher import ChannelDispatcher  # noqa: E402


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Crewflow tables.

    Uses StaticPool so all threads share the same in-memory database
    (FastAPI runs sync routes and background tasks on worker threads).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def store(db_engine: Engine) -> SqlStore:
    return SqlStore(db_engine)


@pytest.fixture
def cfg() -> CrewflowConfig:
    return CrewflowConfig(
        community_name="Test Crewflow",
        bot_prefix="!",
        bot_username="test_flow_bot",
    )


class FakeSender:
    """Records every send; ids listed in ``failing`` report failure."""

    def __init__(self, platform: str = "telegram", failing: set[str] | None = None) -> None:
        self.platform = platform
        self.failing = failing or set()
        self.sent: list[tuple[str, str]] = []

    def send(self, user_id: str, text: str) -> bool:
        if user_id in self.failing:
            return False
        self.sent.append((user_id, text))
        return True

    def recipients(self) -> list[str]:
        return [uid for uid, _ in self.sent]


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender("telegram")


@pytest.fixture
def dispatcher(sender: FakeSender) -> ChannelDispatcher:
    return ChannelDispatcher([sender])


def make_user_token(sub: str, name: str | None = None) -> str:
    """Create a user JWT.  ``sub`` is the caller's platform user id."""
    import jwt

    from crewflow.api.deps import JWT_ALGORITHM, JWT_SECRET

    payload = {"sub": sub}
    if name:
        payload["name"] = name
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

