# src/securechat/utils/encoding.py
"""Base64 codecs for wire fields and user identifiers."""

from __future__ import annotations

import base64
import binascii


def b64encode(data: bytes) -> str:
    """Encode binary protocol data as standard, padded base64."""
    return base64.b64encode(data).decode()


def b64decode(data: str) -> bytes:
    """Strictly decode standard base64.

    Raises:
        ValueError: If ``data`` is not valid base64.
    """
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"Invalid base64 encoding: {err}") from err


def encode_user_id(user_id: bytes) -> str:
    """Return the URL-safe, unpadded form used for user identifiers."""
    return base64.urlsafe_b64encode(user_id).decode().rstrip("=")


def decode_user_id(subject: str) -> bytes:
    """Decode a URL-safe base64 user identifier, accepting omitted padding.

    Raises:
        ValueError: If ``subject`` is not valid URL-safe base64.
    """
    padding = "=" * (-len(subject) % 4)
    try:
        return base64.urlsafe_b64decode(subject + padding)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"Invalid user identifier encoding: {err}") from err
