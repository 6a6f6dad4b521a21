# src/securechat/services/auth.py
"""Possession-of-identity-key login and access token issuing.

A login challenge is an envelope sealed to the account's identity public key.
Its plaintext is ``nonce(16) | expiry(8, big-endian seconds) | MAC(32)`` where
the MAC is a keyed BLAKE3 over the user id, nonce and expiry. Only the holder
of the identity secret key can open it and echo the plaintext back.
"""

from __future__ import annotations

import hmac
import logging
import os
import struct
import time
from datetime import UTC, datetime, timedelta
from threading import Lock

from jose import jwt

from securechat.core.settings import settings
from securechat.services import envelope
from securechat.services.envelope import EncryptedEnvelope
from securechat.utils.encoding import encode_user_id
from securechat.utils.hash import MAC_LENGTH_BYTES, blake3_mac

logger = logging.getLogger(__name__)

CHALLENGE_NONCE_BYTES = 16
_EXPIRY = struct.Struct(">Q")
CHALLENGE_LENGTH_BYTES = CHALLENGE_NONCE_BYTES + _EXPIRY.size + MAC_LENGTH_BYTES


class ChallengeError(ValueError):
    """Raised when a challenge response is malformed, forged, expired or reused."""


def create_access_token(subject: bytes | str, extra_claims: dict[str, str] | None = None) -> str:
    """Create JWT access token for user authentication."""
    sub = subject if isinstance(subject, str) else encode_user_id(subject)
    to_encode: dict[str, object] = {"sub": sub}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


class ChallengeService:
    """Issues and verifies identity-key login challenges.

    Challenges are stateless apart from the set of nonces already redeemed,
    which is kept in memory until the matching challenge would have expired.
    """

    def __init__(self, ttl_seconds: int | None = None) -> None:
        self.ttl_seconds = ttl_seconds or settings.auth_challenge_ttl_seconds
        self._redeemed: dict[bytes, int] = {}
        self._lock = Lock()

    def _mac(self, user_id: bytes, nonce: bytes, expiry: bytes) -> bytes:
        return blake3_mac(settings.secret_key, b"login-challenge" + user_id + nonce + expiry)

    def issue(self, user_id: bytes, identity_public_key: bytes) -> EncryptedEnvelope:
        """Seal a fresh challenge to ``identity_public_key``."""
        nonce = os.urandom(CHALLENGE_NONCE_BYTES)
        expiry = _EXPIRY.pack(int(time.time()) + self.ttl_seconds)
        plaintext = nonce + expiry + self._mac(user_id, nonce, expiry)
        return envelope.encrypt(identity_public_key, plaintext)

    def verify(self, user_id: bytes, response: bytes) -> None:
        """Check a decrypted challenge and mark it redeemed.

        Raises:
            ChallengeError: If the response is malformed, forged, expired or already used.
        """
        if len(response) != CHALLENGE_LENGTH_BYTES:
            raise ChallengeError("Malformed challenge response")
        nonce = response[:CHALLENGE_NONCE_BYTES]
        expiry = response[CHALLENGE_NONCE_BYTES : CHALLENGE_NONCE_BYTES + _EXPIRY.size]
        mac = response[CHALLENGE_NONCE_BYTES + _EXPIRY.size :]

        if not hmac.compare_digest(mac, self._mac(user_id, nonce, expiry)):
            raise ChallengeError("Challenge response does not match")
        (expires_at,) = _EXPIRY.unpack(expiry)
        now = int(time.time())
        if expires_at < now:
            raise ChallengeError("Challenge has expired")

        with self._lock:
            self._redeemed = {key: exp for key, exp in self._redeemed.items() if exp >= now}
            if nonce in self._redeemed:
                raise ChallengeError("Challenge has already been used")
            self._redeemed[nonce] = expires_at
        logger.debug("Redeemed login challenge")


_CHALLENGES = ChallengeService()


def get_challenge_service() -> ChallengeService:
    """Return the process-wide challenge service."""
    return _CHALLENGES
