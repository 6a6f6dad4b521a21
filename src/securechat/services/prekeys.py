# src/securechat/services/prekeys.py
"""Server-side publication and at-most-once consumption of one-time prekeys."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from securechat.core.settings import settings
from securechat.db.time import utcnow
from securechat.models import PreKey, User
from securechat.services.crypto import CryptoService
from securechat.services.errors import PreKeyExhausted

logger = logging.getLogger(__name__)


class DuplicatePreKeyError(ValueError):
    """Raised when a published prekey id is already registered for the identity."""


@dataclass(frozen=True)
class ClaimedPreKey:
    """A prekey that has just been marked used for exactly one caller."""

    key_id: int
    public_key: bytes


class PreKeyService:
    """Publishes prekeys and hands each one out at most once."""

    def __init__(self, claim_retries: int | None = None) -> None:
        self.claim_retries = max(1, claim_retries or settings.prekey_claim_retries)

    def publish(self, db: Session, user: User, prekeys: Sequence[tuple[int, bytes]]) -> int:
        """Store a batch of ``(key_id, public_key)`` pairs for ``user``.

        Raises:
            ValueError: If the batch is too large or contains an invalid key.
            DuplicatePreKeyError: If a key id repeats within the batch or is already stored.
        """
        if len(prekeys) > settings.prekey_batch_max:
            raise ValueError(f"At most {settings.prekey_batch_max} prekeys may be published at once")

        key_ids = [key_id for key_id, _ in prekeys]
        if len(set(key_ids)) != len(key_ids):
            raise DuplicatePreKeyError("Prekey ids must be unique within a batch")
        for _, public_key in prekeys:
            CryptoService.validate_public_key(public_key)

        if key_ids:
            existing = db.scalars(
                select(PreKey.key_id).where(PreKey.user_id == user.user_id, PreKey.key_id.in_(key_ids))
            ).all()
            if existing:
                raise DuplicatePreKeyError(
                    f"Prekey ids already published: {', '.join(str(key_id) for key_id in sorted(existing))}"
                )

        for key_id, public_key in prekeys:
            db.add(PreKey(user_id=user.user_id, key_id=key_id, public_key=public_key, used=False))
        return len(prekeys)

    def count_unused(self, db: Session, user_id: bytes) -> int:
        """Return the number of prekeys still available for ``user_id``."""
        return int(
            db.scalar(
                select(func.count())
                .select_from(PreKey)
                .where(PreKey.user_id == user_id, PreKey.used.is_(False))
            )
            or 0
        )

    def claim(self, db: Session, user_id: bytes, *, strict: bool = False) -> ClaimedPreKey | None:
        """Atomically mark one unused prekey as used and return it.

        The candidate is selected and flipped in a single conditional UPDATE; the
        ``used = false`` guard makes it a compare-and-set, so a concurrent claimer
        that lost the race updates nothing and retries with the next candidate.

        Args:
            db: Database session; the claim is committed before returning
            user_id: Identity whose prekey is being consumed
            strict: Raise instead of returning None when no prekey is left

        Raises:
            PreKeyExhausted: If ``strict`` and no unused prekey remains.
        """
        for attempt in range(1, self.claim_retries + 1):
            candidate = (
                select(PreKey.id)
                .where(PreKey.user_id == user_id, PreKey.used.is_(False))
                .order_by(PreKey.key_id)
                .limit(1)
                .scalar_subquery()
            )
            stmt = (
                update(PreKey)
                .where(PreKey.id == candidate, PreKey.used.is_(False))
                .values(used=True, used_at=utcnow())
                .returning(PreKey.key_id, PreKey.public_key)
                .execution_options(synchronize_session=False)
            )
            row = db.execute(stmt).first()
            db.commit()
            if row is not None:
                logger.debug("Claimed prekey %d on attempt %d", row.key_id, attempt)
                return ClaimedPreKey(key_id=row.key_id, public_key=row.public_key)
            if self.count_unused(db, user_id) == 0:
                break

        logger.warning("One-time prekeys exhausted; falling back to identity-key agreement")
        if strict:
            raise PreKeyExhausted("No unused one-time prekey available")
        return None
