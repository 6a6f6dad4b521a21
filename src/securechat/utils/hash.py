# src/securechat/utils/hash.py
"""Hashing helpers built on BLAKE3."""

from __future__ import annotations

from blake3 import blake3

MAC_LENGTH_BYTES = 32


def blake3_digest(data: bytes) -> bytes:
    """Return the byte digest of the supplied data."""
    return blake3(data).digest()


def blake3_hexdigest(data: bytes) -> str:
    """Return the hexadecimal digest of the supplied data."""
    return blake3(data).hexdigest()


def blake3_mac(secret: str | bytes, data: bytes) -> bytes:
    """Return a keyed BLAKE3 MAC of ``data``.

    BLAKE3 keyed mode takes exactly 32 key bytes, so arbitrary-length secrets
    are hashed down first.
    """
    raw = secret.encode() if isinstance(secret, str) else secret
    return blake3(data, key=blake3_digest(raw)).digest()
