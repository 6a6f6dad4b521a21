# tests/services/test_sweeps.py
"""Tests for the scheduled-delivery and self-destruct sweeps."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from securechat.core.settings import settings
from securechat.db.time import utcnow
from securechat.models import DirectMessage, User
from securechat.services import events
from securechat.services.crypto import CryptoService
from securechat.services.events import Event, EventBroker
from securechat.services.scheduler import MessageSweeper, MessageSweepWorker
from securechat.utils.encoding import encode_user_id


@pytest.fixture()
def parties(db_session: Session) -> tuple[User, User]:
    users = []
    for _ in range(2):
        pair = CryptoService.generate_identity_key_pair()
        user = User(user_id=CryptoService.derive_user_id(pair.public_key), identity_public_key=pair.public_key)
        db_session.add(user)
        users.append(user)
    db_session.commit()
    return users[0], users[1]


@pytest.fixture()
def inbox(parties: tuple[User, User]) -> tuple[EventBroker, list[Event]]:
    broker = EventBroker()
    received: list[Event] = []
    broker.subscribe(parties[1].user_id, received.append)
    return broker, received


def _store(db: Session, sender: User, recipient: User, **values: Any) -> DirectMessage:
    message = DirectMessage(
        sender_user_id=sender.user_id,
        recipient_user_id=recipient.user_id,
        ciphertext=b"ciphertext",
        nonce=b"n" * 12,
        ephemeral_public_key=b"e" * 65,
        **values,
    )
    db.add(message)
    db.commit()
    return message


def test_scheduled_message_released_once(
    db_session: Session,
    parties: tuple[User, User],
    inbox: tuple[EventBroker, list[Event]],
) -> None:
    broker, received = inbox
    t0 = utcnow()
    message = _store(db_session, *parties, is_scheduled=True, scheduled_for=t0 + timedelta(seconds=10))
    sweeper = MessageSweeper(broker)

    assert sweeper.release_scheduled(db_session, t0 + timedelta(seconds=5)) == []
    assert received == []

    assert sweeper.release_scheduled(db_session, t0 + timedelta(seconds=70)) == [message.id]
    assert sweeper.release_scheduled(db_session, t0 + timedelta(seconds=130)) == []

    assert [event.name for event in received] == [events.NEW_MESSAGE]
    assert received[0].payload["id"] == message.id
    assert received[0].payload["isScheduled"] is False
    assert received[0].payload["senderId"] == encode_user_id(parties[0].user_id)
    db_session.refresh(message)
    assert message.is_scheduled is False


def test_destruct_wins_over_release(
    db_session: Session,
    parties: tuple[User, User],
    inbox: tuple[EventBroker, list[Event]],
) -> None:
    broker, received = inbox
    t0 = utcnow()
    message = _store(
        db_session,
        *parties,
        is_scheduled=True,
        scheduled_for=t0 + timedelta(seconds=10),
        self_destruct_at=t0 + timedelta(seconds=5),
    )

    released = MessageSweeper(broker).release_scheduled(db_session, t0 + timedelta(seconds=70))

    assert released == []
    assert received == []
    db_session.refresh(message)
    assert message.deleted is True
    assert message.is_scheduled is False


def test_self_destruct_sweep_tombstones_in_bulk(
    db_session: Session,
    parties: tuple[User, User],
    inbox: tuple[EventBroker, list[Event]],
) -> None:
    broker, _ = inbox
    t0 = utcnow()
    expiring = _store(db_session, *parties, self_destruct_at=t0 + timedelta(seconds=1))
    lasting = _store(db_session, *parties, self_destruct_at=t0 + timedelta(hours=1))
    plain = _store(db_session, *parties)
    sweeper = MessageSweeper(broker)

    assert sweeper.purge_expired(db_session, t0 + timedelta(seconds=10)) == 1
    assert sweeper.purge_expired(db_session, t0 + timedelta(seconds=20)) == 0

    for message in (expiring, lasting, plain):
        db_session.refresh(message)
    assert expiring.deleted is True
    assert expiring.deleted_at is not None
    assert lasting.deleted is False
    assert plain.deleted is False


@pytest.mark.asyncio
async def test_worker_keeps_running_after_a_failed_iteration(
    mocker: Any,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    monkeypatch.setattr(settings, "scheduled_sweep_interval_seconds", 0.05)
    monkeypatch.setattr(settings, "self_destruct_sweep_interval_seconds", 0.05)
    calls = {"count": 0}

    def flaky_release(db: Any, now: Any) -> list[int]:
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("UPDATE direct_message", {}, Exception("database is locked"))
        return []

    sweeper = mocker.Mock(spec=MessageSweeper)
    sweeper.release_scheduled.side_effect = flaky_release
    sweeper.purge_expired.return_value = 0
    worker = MessageSweepWorker(sweeper=sweeper, session_factory=mocker.MagicMock())

    with caplog.at_level("WARNING", logger="securechat.services.scheduler"):
        await worker.start()
        await asyncio.sleep(0.3)
        await worker.stop()

    assert calls["count"] >= 2
    assert sweeper.purge_expired.call_count >= 2
    assert "database error" in caplog.text


@pytest.mark.asyncio
async def test_worker_stop_is_idempotent(mocker: Any) -> None:
    sweeper = mocker.Mock(spec=MessageSweeper)
    sweeper.release_scheduled.return_value = []
    sweeper.purge_expired.return_value = 0
    worker = MessageSweepWorker(sweeper=sweeper, session_factory=mocker.MagicMock())

    await worker.stop()
    await worker.start()
    await asyncio.sleep(0.05)
    await worker.stop()
    await worker.stop()

    sweeper.release_scheduled.assert_called()
