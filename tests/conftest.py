# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SWEEPS_ENABLED", "false")

from securechat.api.v1.dependencies import get_now
from securechat.db.session import Base
from securechat.db.session import get_db as app_get_session
from securechat.db.time import utcnow
from securechat.main import app as fastapi_app
from securechat.services.events import EventBroker, get_event_broker
from tests.helpers import FrozenClock, Identity, register_identity

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
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
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def broker(app: FastAPI) -> Iterator[EventBroker]:
    """Fresh event broker wired into the app for the duration of a test."""
    fresh = EventBroker()
    app.dependency_overrides[get_event_broker] = lambda: fresh
    try:
        yield fresh
    finally:
        app.dependency_overrides.pop(get_event_broker, None)


@pytest.fixture()
def clock(app: FastAPI) -> Iterator[FrozenClock]:
    """Freeze the request clock; tests move it with ``clock.advance``."""
    frozen = FrozenClock(utcnow().replace(microsecond=0))
    app.dependency_overrides[get_now] = frozen
    try:
        yield frozen
    finally:
        app.dependency_overrides.pop(get_now, None)


@pytest.fixture()
def client(app: FastAPI, broker: EventBroker) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def alice(client: TestClient) -> Identity:
    return register_identity(client, "Alice")


@pytest.fixture()
def bob(client: TestClient) -> Identity:
    return register_identity(client, "Bob")


@pytest.fixture()
def carol(client: TestClient) -> Identity:
    return register_identity(client, "Carol")
