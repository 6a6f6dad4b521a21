# src/securechat/schemas/keys.py
"""Identity, prekey and authentication schemas."""

from __future__ import annotations

from pydantic import Field

from .common import ApiModel, Base64Bytes, UserIdBytes

# Key ids are stored in signed 64-bit columns.
MAX_KEY_ID = 2**63 - 1


class PreKeyUpload(ApiModel):
    """One-time prekey published by its owner."""

    key_id: int = Field(..., ge=0, le=MAX_KEY_ID, description="Identifier unique within the owner's prekeys")
    public_key: Base64Bytes = Field(..., description="Base64 raw P-256 public point")


class SignedPreKeyUpload(PreKeyUpload):
    """Medium-term prekey with the owner's signature over it."""

    signature: Base64Bytes = Field(..., description="Base64 signature over the public key")


class RegisterRequest(ApiModel):
    """Registration of a new identity and its initial prekeys."""

    display_name: str | None = Field(None, max_length=100)
    identity_public_key: Base64Bytes = Field(..., description="Base64 raw P-256 identity public key")
    signed_pre_key: SignedPreKeyUpload | None = None
    pre_keys: list[PreKeyUpload] = Field(default_factory=list)


class PreKeyBatch(ApiModel):
    """Replenishment batch of one-time prekeys."""

    pre_keys: list[PreKeyUpload] = Field(..., min_length=1)


class ChallengeRequest(ApiModel):
    """Request for a login challenge sealed to the identity key."""

    user_id: UserIdBytes


class LoginRequest(ApiModel):
    """Proof of identity: the decrypted challenge plaintext."""

    user_id: UserIdBytes
    response: Base64Bytes = Field(..., description="Base64 plaintext of the challenge envelope")


class UserSettingsUpdate(ApiModel):
    """Privacy toggles for receipts and typing indicators."""

    read_receipts_enabled: bool | None = None
    typing_indicators_enabled: bool | None = None
