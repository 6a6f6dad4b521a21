# tests/services/test_prekey_claim.py
"""Tests for prekey publication and at-most-once claiming."""

from __future__ import annotations

from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from securechat.db.session import Base
from securechat.models import PreKey, User
from securechat.services.crypto import CryptoService
from securechat.services.errors import PreKeyExhausted
from securechat.services.prekeys import DuplicatePreKeyError, PreKeyService


def _make_user(db: Session) -> User:
    pair = CryptoService.generate_identity_key_pair()
    user = User(user_id=CryptoService.derive_user_id(pair.public_key), identity_public_key=pair.public_key)
    db.add(user)
    db.flush()
    return user


def _prekey_batch(count: int, start: int = 1) -> list[tuple[int, bytes]]:
    return [(prekey.key_id, prekey.public_key) for prekey in CryptoService.generate_prekeys(count, start=start)]


def test_publish_and_count(db_session: Session) -> None:
    service = PreKeyService()
    user = _make_user(db_session)

    assert service.publish(db_session, user, _prekey_batch(3)) == 3
    db_session.commit()

    assert service.count_unused(db_session, user.user_id) == 3


def test_publish_rejects_duplicate_ids(db_session: Session) -> None:
    service = PreKeyService()
    user = _make_user(db_session)
    service.publish(db_session, user, _prekey_batch(2, start=10))
    db_session.commit()

    with pytest.raises(DuplicatePreKeyError):
        service.publish(db_session, user, _prekey_batch(1, start=11))
    batch = _prekey_batch(1, start=50)
    with pytest.raises(DuplicatePreKeyError):
        service.publish(db_session, user, batch + batch)


def test_publish_rejects_invalid_keys_and_oversized_batches(
    db_session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    from securechat.core.settings import settings

    service = PreKeyService()
    user = _make_user(db_session)

    with pytest.raises(ValueError):
        service.publish(db_session, user, [(1, b"\x04" + b"\x00" * 64)])

    monkeypatch.setattr(settings, "prekey_batch_max", 2)
    with pytest.raises(ValueError):
        service.publish(db_session, user, _prekey_batch(3))


def test_sequential_claims_never_repeat(db_session: Session) -> None:
    service = PreKeyService()
    user = _make_user(db_session)
    service.publish(db_session, user, _prekey_batch(3))
    db_session.commit()

    claimed = [service.claim(db_session, user.user_id) for _ in range(3)]

    assert sorted(c.key_id for c in claimed if c is not None) == [1, 2, 3]
    assert service.count_unused(db_session, user.user_id) == 0
    rows = db_session.scalars(select(PreKey).where(PreKey.user_id == user.user_id)).all()
    assert all(row.used and row.used_at is not None for row in rows)


def test_exhaustion_falls_back_or_raises(db_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    service = PreKeyService()
    user = _make_user(db_session)
    db_session.commit()

    with caplog.at_level("WARNING", logger="securechat.services.prekeys"):
        assert service.claim(db_session, user.user_id) is None
    assert "exhausted" in caplog.text
    with pytest.raises(PreKeyExhausted):
        service.claim(db_session, user.user_id, strict=True)


def test_claims_are_scoped_to_the_owner(db_session: Session) -> None:
    service = PreKeyService()
    owner = _make_user(db_session)
    stranger = _make_user(db_session)
    service.publish(db_session, owner, _prekey_batch(1))
    db_session.commit()

    assert service.claim(db_session, stranger.user_id) is None
    claimed = service.claim(db_session, owner.user_id)
    assert claimed is not None and claimed.key_id == 1


@pytest.fixture()
def file_engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'claims.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


def test_concurrent_claims_hand_out_each_prekey_once(file_engine: Engine) -> None:
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    service = PreKeyService()
    with factory() as db:
        user = _make_user(db)
        service.publish(db, user, _prekey_batch(20))
        db.commit()
        user_id = user.user_id

    def claim_many() -> list[int]:
        with factory() as db:
            results = [service.claim(db, user_id) for _ in range(5)]
        return [claimed.key_id for claimed in results if claimed is not None]

    with ThreadPoolExecutor(max_workers=8) as pool:
        batches = list(pool.map(lambda _: claim_many(), range(8)))

    claimed = [key_id for batch in batches for key_id in batch]
    assert len(claimed) == len(set(claimed)) == 20
    with factory() as db:
        assert service.count_unused(db, user_id) == 0
