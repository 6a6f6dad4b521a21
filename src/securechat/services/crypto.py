# src/securechat/services/crypto.py
"""Key pair management for SecureChat identities."""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from securechat.services.errors import UnsupportedEnvironment
from securechat.utils.hash import blake3_digest, blake3_hexdigest

CURVE = ec.SECP256R1()
PUBLIC_KEY_LENGTH_BYTES = 65
FINGERPRINT_HEX_DIGITS = 32

_UNSUPPORTED_GUIDANCE = (
    "P-256 key agreement is not available from the installed cryptography backend. "
    "Install a cryptography build linked against OpenSSL with elliptic curve support."
)


@dataclass(frozen=True)
class KeyPair:
    """Raw P-256 key pair: X9.62 uncompressed public point and PKCS#8 DER secret."""

    public_key: bytes
    secret_key: bytes

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key.hex()[:16]}..., secret_key=<redacted>)"


@dataclass(frozen=True)
class PreKeyPair(KeyPair):
    """One-time prekey pair tagged with an identifier unique per identity."""

    key_id: int = 0

    def __repr__(self) -> str:
        return f"PreKeyPair(key_id={self.key_id}, secret_key=<redacted>)"


class CryptoService:
    """Service handling key generation, import and validation."""

    @staticmethod
    def generate_private_key() -> ec.EllipticCurvePrivateKey:
        """Generate a P-256 private key suitable for ECDH.

        Raises:
            UnsupportedEnvironment: If the backend cannot provide P-256.
        """
        try:
            return ec.generate_private_key(CURVE)
        except UnsupportedAlgorithm as err:
            raise UnsupportedEnvironment(_UNSUPPORTED_GUIDANCE) from err

    @staticmethod
    def encode_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
        """Return the raw uncompressed point of ``public_key``."""
        return public_key.public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )

    @staticmethod
    def encode_private_key(private_key: ec.EllipticCurvePrivateKey) -> bytes:
        """Return ``private_key`` as unencrypted PKCS#8 DER."""
        return private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @staticmethod
    def load_public_key(raw: bytes) -> ec.EllipticCurvePublicKey:
        """Import a raw P-256 public point.

        Raises:
            ValueError: If ``raw`` is not a valid uncompressed P-256 point.
        """
        if len(raw) != PUBLIC_KEY_LENGTH_BYTES:
            raise ValueError("P-256 public keys must be 65-byte uncompressed points")
        try:
            return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, raw)
        except (ValueError, TypeError) as err:
            raise ValueError(f"Invalid P-256 public key: {err}") from err

    @staticmethod
    def load_private_key(der: bytes) -> ec.EllipticCurvePrivateKey:
        """Import a PKCS#8 DER P-256 private key.

        Raises:
            ValueError: If ``der`` is not a P-256 private key.
        """
        try:
            key = serialization.load_der_private_key(der, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise ValueError(f"Invalid private key: {err}") from err
        if not isinstance(key, ec.EllipticCurvePrivateKey) or key.curve.name != CURVE.name:
            raise ValueError("Private key is not a P-256 key")
        return key

    @staticmethod
    def validate_public_key(raw: bytes) -> bytes:
        """Return ``raw`` unchanged if it is a usable P-256 public key."""
        CryptoService.load_public_key(raw)
        return raw

    @staticmethod
    def generate_identity_key_pair() -> KeyPair:
        """Generate the long-lived identity key pair for a new account."""
        private_key = CryptoService.generate_private_key()
        return KeyPair(
            public_key=CryptoService.encode_public_key(private_key.public_key()),
            secret_key=CryptoService.encode_private_key(private_key),
        )

    @staticmethod
    def generate_prekeys(
        count: int,
        existing_ids: Iterable[int] = (),
        start: int | None = None,
    ) -> list[PreKeyPair]:
        """Generate ``count`` one-time prekeys with identifiers unique per identity.

        Identifiers start at the current time in milliseconds (or ``start``) and
        skip any value present in ``existing_ids``.

        Args:
            count: Number of prekeys to generate
            existing_ids: Identifiers already allocated for this identity
            start: Optional first identifier to try

        Returns:
            List of prekey pairs in identifier order
        """
        if count < 0:
            raise ValueError("Prekey count must not be negative")

        taken = set(existing_ids)
        next_id = int(time.time() * 1000) if start is None else start
        prekeys: list[PreKeyPair] = []
        for _ in range(count):
            while next_id in taken:
                next_id += 1
            private_key = CryptoService.generate_private_key()
            prekeys.append(
                PreKeyPair(
                    public_key=CryptoService.encode_public_key(private_key.public_key()),
                    secret_key=CryptoService.encode_private_key(private_key),
                    key_id=next_id,
                )
            )
            taken.add(next_id)
            next_id += 1
        return prekeys

    @staticmethod
    def derive_user_id(identity_public_key: bytes) -> bytes:
        """Return the account identifier derived from an identity public key."""
        return blake3_digest(identity_public_key)

    @staticmethod
    def fingerprint(public_key: bytes) -> str:
        """Return a short fingerprint for out-of-band key verification.

        Returns:
            Upper-case hex digest grouped in blocks of four characters
        """
        digest = blake3_hexdigest(public_key)[:FINGERPRINT_HEX_DIGITS].upper()
        return " ".join(digest[i:i + 4] for i in range(0, len(digest), 4))
