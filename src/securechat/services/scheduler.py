# src/securechat/services/scheduler.py
"""Background sweeps for scheduled delivery and self-destructing messages.

Two independent loops run against the message store:

- the scheduled-delivery sweep releases messages whose ``scheduled_for`` has
  passed and fires exactly one ``new_message`` event per release;
- the self-destruct sweep tombstones messages whose ``self_destruct_at`` has
  passed.

A message that is due for both is destroyed and never delivered.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from securechat.core.settings import settings
from securechat.db.time import utcnow
from securechat.models import DirectMessage
from securechat.schemas.direct_message import serialize_message
from securechat.services import events
from securechat.services.events import EventBroker, get_event_broker
from securechat.services.lifecycle import is_destructed

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class MessageSweeper:
    """Applies the eager half of the lifecycle rules to persisted messages."""

    def __init__(self, broker: EventBroker | None = None) -> None:
        self.broker = broker or get_event_broker()

    def release_scheduled(self, db: Session, now: datetime) -> list[int]:
        """Release every scheduled message that is due.

        Each row is flipped with a compare-and-set on ``is_scheduled`` so that
        overlapping sweeps cannot release (and announce) the same message twice.

        Returns:
            Identifiers of the messages released and announced
        """
        due = db.scalars(
            select(DirectMessage).where(
                DirectMessage.is_scheduled.is_(True),
                DirectMessage.scheduled_for <= now,
            )
        ).all()

        released: list[int] = []
        for message in due:
            values: dict[str, object] = {"is_scheduled": False}
            # Destruct wins: never deliver a message that should already be gone.
            suppressed = message.deleted or is_destructed(message, now)
            if suppressed and not message.deleted:
                values.update(deleted=True, deleted_at=now)
            row = db.execute(
                update(DirectMessage)
                .where(DirectMessage.id == message.id, DirectMessage.is_scheduled.is_(True))
                .values(**values)
                .returning(DirectMessage.id)
                .execution_options(synchronize_session=False)
            ).first()
            if row is not None and not suppressed:
                released.append(message.id)
        db.commit()
        db.expire_all()

        for message in due:
            if message.id in released:
                self.broker.publish(
                    message.recipient_user_id,
                    events.NEW_MESSAGE,
                    serialize_message(message),
                )
        if released:
            logger.info("Released %d scheduled messages", len(released))
        return released

    def purge_expired(self, db: Session, now: datetime) -> int:
        """Tombstone every message whose self-destruct instant has passed.

        Returns:
            Number of messages newly marked deleted
        """
        purged = db.execute(
            update(DirectMessage)
            .where(
                DirectMessage.deleted.is_(False),
                DirectMessage.self_destruct_at.is_not(None),
                DirectMessage.self_destruct_at <= now,
            )
            .values(deleted=True, deleted_at=now)
            .returning(DirectMessage.id)
            .execution_options(synchronize_session=False)
        ).scalars().all()
        db.commit()
        db.expire_all()
        if purged:
            logger.info("Self-destructed %d messages", len(purged))
        return len(purged)


class MessageSweepWorker:
    """Runs both sweeps on their own fixed-interval timers.

    Each loop re-arms on its own schedule; a slow or failing iteration is
    logged and the missed ticks are skipped rather than queued up.
    """

    def __init__(
        self,
        sweeper: MessageSweeper | None = None,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.sweeper = sweeper or MessageSweeper()
        self._session_factory = session_factory
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()

    def _session(self) -> Session:
        if self._session_factory is None:
            from securechat.db.session import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory()

    def run_scheduled_once(self) -> list[int]:
        with self._session() as db:
            return self.sweeper.release_scheduled(db, self._clock())

    def run_self_destruct_once(self) -> int:
        with self._session() as db:
            return self.sweeper.purge_expired(db, self._clock())

    async def start(self) -> None:
        """Start both sweep loops."""
        if self._tasks:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(
                self._run(
                    "scheduled",
                    settings.scheduled_sweep_interval_seconds,
                    lambda: asyncio.to_thread(self.run_scheduled_once),
                )
            ),
            asyncio.create_task(
                self._run(
                    "self-destruct",
                    settings.self_destruct_sweep_interval_seconds,
                    lambda: asyncio.to_thread(self.run_self_destruct_once),
                )
            ),
        ]

    async def stop(self) -> None:
        """Stop both loops and wait for in-flight iterations to finish."""
        if not self._tasks:
            return
        self._stopping.set()
        await asyncio.gather(*self._tasks)
        self._tasks = []

    async def _run(self, name: str, interval_seconds: float, step: Callable[[], Awaitable[object]]) -> None:
        interval = max(0.05, float(interval_seconds))
        next_tick = time.monotonic()

        while not self._stopping.is_set():
            try:
                await step()
            except SQLAlchemyError as e:
                logger.warning("%s sweep failed with a database error: %s", name, e)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("%s sweep encountered a data error: %s", name, e, exc_info=True)

            next_tick += interval
            now = time.monotonic()
            if next_tick < now:
                skipped = int((now - next_tick) // interval) + 1
                logger.warning("%s sweep overran its interval; skipping %d tick(s)", name, skipped)
                next_tick += skipped * interval

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=next_tick - now)
            except TimeoutError:
                continue
