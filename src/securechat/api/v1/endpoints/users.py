# src/securechat/api/v1/endpoints/users.py
"""User profile, key bundle and prekey endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status

from securechat.api.v1.dependencies import CurrentUserDep, SessionDep, parse_user_id
from securechat.core.settings import settings
from securechat.models import User
from securechat.schemas.keys import PreKeyBatch, UserSettingsUpdate
from securechat.services.crypto import CryptoService
from securechat.services.prekeys import DuplicatePreKeyError, PreKeyService
from securechat.utils.encoding import b64encode, encode_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])
prekey_service = PreKeyService()


def _public_profile(user: User) -> dict[str, Any]:
    return {
        "userId": encode_user_id(user.user_id),
        "displayName": user.display_name,
        "identityPublicKey": b64encode(user.identity_public_key),
        "fingerprint": CryptoService.fingerprint(user.identity_public_key),
    }


def _signed_prekey(user: User) -> dict[str, Any] | None:
    if user.signed_prekey_public is None:
        return None
    return {
        "keyId": user.signed_prekey_id,
        "publicKey": b64encode(user.signed_prekey_public),
        "signature": b64encode(user.signed_prekey_signature or b""),
    }


@router.get("/me", summary="Get the authenticated user's profile")
async def get_me(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    profile = _public_profile(current_user)
    profile.update(
        {
            "readReceiptsEnabled": current_user.read_receipts_enabled,
            "typingIndicatorsEnabled": current_user.typing_indicators_enabled,
            "unusedPreKeys": prekey_service.count_unused(db, current_user.user_id),
        }
    )
    return profile


@router.patch("/me/settings", summary="Update privacy settings")
async def update_settings(
    payload: UserSettingsUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, bool]:
    """Toggle read receipts and typing indicators."""
    if payload.read_receipts_enabled is not None:
        current_user.read_receipts_enabled = payload.read_receipts_enabled
    if payload.typing_indicators_enabled is not None:
        current_user.typing_indicators_enabled = payload.typing_indicators_enabled
    db.commit()
    return {
        "readReceiptsEnabled": current_user.read_receipts_enabled,
        "typingIndicatorsEnabled": current_user.typing_indicators_enabled,
    }


@router.post(
    "/me/prekeys",
    summary="Publish more one-time prekeys",
    status_code=status.HTTP_201_CREATED,
)
async def publish_prekeys(
    payload: PreKeyBatch,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, int]:
    try:
        published = prekey_service.publish(
            db,
            current_user,
            [(prekey.key_id, prekey.public_key) for prekey in payload.pre_keys],
        )
    except DuplicatePreKeyError as err:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(err)) from err
    except ValueError as err:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    db.commit()
    return {
        "published": published,
        "unused": prekey_service.count_unused(db, current_user.user_id),
    }


@router.get("/me/prekeys/count", summary="Count unused one-time prekeys")
async def count_prekeys(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    unused = prekey_service.count_unused(db, current_user.user_id)
    return {"unused": unused, "low": unused < settings.prekey_low_watermark}


@router.get("/{user_id}", summary="Get a user's public profile")
async def get_user(user_id: str, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    user = db.get(User, parse_user_id(user_id))
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _public_profile(user)


@router.get("/{user_id}/keys", summary="Fetch a key bundle for first contact")
async def get_key_bundle(user_id: str, current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    """Return the identity key, the signed prekey and one freshly claimed one-time prekey.

    Each one-time prekey is handed to exactly one caller. When none is left
    ``oneTimePreKey`` is null and the caller encrypts to the identity key alone.
    """
    user = db.get(User, parse_user_id(user_id))
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    claimed = prekey_service.claim(db, user.user_id)
    one_time = None
    if claimed is not None:
        one_time = {"keyId": claimed.key_id, "publicKey": b64encode(claimed.public_key)}
    return {
        "userId": encode_user_id(user.user_id),
        "identityPublicKey": b64encode(user.identity_public_key),
        "signedPreKey": _signed_prekey(user),
        "oneTimePreKey": one_time,
    }
