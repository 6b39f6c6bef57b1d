# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("EXPIRED_SWEEP_ENABLED", "false")

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from duet_stage.core.security import create_access_token
from duet_stage.db.session import Base
from duet_stage.db.session import get_db as app_get_session
from duet_stage.main import app as fastapi_app
from duet_stage.models import User
from duet_stage.services.orchestrator import EventOrchestrator
from duet_stage.services.presence import PresenceRegistry

TEST_DB_URL = "sqlite://"


class FakeConnection:
    """Connection handle that records every event sent to it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Any]] = []

    async def send(self, event: str, data: Any) -> None:
        self.sent.append((event, data))

    def events(self) -> list[str]:
        return [name for name, _ in self.sent]

    def last(self, event: str) -> Any:
        for name, data in reversed(self.sent):
            if name == event:
                return data
        raise AssertionError(f"{event!r} was never sent; got {self.events()}")

    def clear(self) -> None:
        self.sent.clear()


class RecordingPushNotifier:
    """Push notifier that remembers who it was asked to notify."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, str]] = []

    async def notify(self, user_id: int, kind: str) -> None:
        self.calls.append((user_id, kind))


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture()
def push_notifier() -> RecordingPushNotifier:
    return RecordingPushNotifier()


@pytest.fixture()
def orchestrator(
    presence: PresenceRegistry,
    session_factory: sessionmaker[Session],
    push_notifier: RecordingPushNotifier,
) -> EventOrchestrator:
    return EventOrchestrator(presence, session_factory=session_factory, push_notifier=push_notifier)


@pytest.fixture()
def app(
    presence: PresenceRegistry,
    orchestrator: EventOrchestrator,
    session_factory: sessionmaker[Session],
) -> Iterator[FastAPI]:
    def _get_session_override() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    previous = (fastapi_app.state.presence, fastapi_app.state.orchestrator)
    fastapi_app.state.presence = presence
    fastapi_app.state.orchestrator = orchestrator
    fastapi_app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.pop(app_get_session, None)
        fastapi_app.state.presence, fastapi_app.state.orchestrator = previous


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory persisting users with unique handles."""

    def _make(username: str, tag: str = "0001") -> User:
        user = User(username=username, tag=tag)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def alice(make_user: Callable[..., User]) -> User:
    return make_user("alice", "1111")


@pytest.fixture()
def bob(make_user: Callable[..., User]) -> User:
    return make_user("bob", "2222")


@pytest.fixture()
def carol(make_user: Callable[..., User]) -> User:
    return make_user("carol", "3333")


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Return a helper building authorization headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture()
def connect(presence: PresenceRegistry) -> Callable[[User], FakeConnection]:
    """Return a helper registering a recording connection for a user."""

    def _connect(user: User) -> FakeConnection:
        connection = FakeConnection()
        presence.set(user.id, connection)
        return connection

    return _connect
