# src/securechat/schemas/common.py
"""Shared Pydantic building blocks for API payloads."""
from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

from securechat.utils.encoding import b64decode, decode_user_id


def _decode_base64_field(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if not isinstance(value, str):
        raise ValueError("Expected a base64-encoded string")
    return b64decode(value)


def _decode_user_id_field(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if not isinstance(value, str) or not value:
        raise ValueError("Expected a URL-safe base64 user identifier")
    return decode_user_id(value)


# Binary protocol fields travel as standard base64 and are decoded on the way in.
Base64Bytes = Annotated[bytes, BeforeValidator(_decode_base64_field)]
UserIdBytes = Annotated[bytes, BeforeValidator(_decode_user_id_field)]


class ApiModel(BaseModel):
    """Base for request bodies: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
