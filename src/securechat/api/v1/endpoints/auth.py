# src/securechat/api/v1/endpoints/auth.py
"""Authentication endpoints for the SecureChat API."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from securechat.api.v1.dependencies import SessionDep
from securechat.core.settings import settings
from securechat.models import User
from securechat.schemas.keys import ChallengeRequest, LoginRequest, RegisterRequest
from securechat.services.auth import (
    ChallengeError,
    ChallengeService,
    create_access_token,
    get_challenge_service,
)
from securechat.services.crypto import CryptoService
from securechat.services.prekeys import DuplicatePreKeyError, PreKeyService
from securechat.utils.encoding import encode_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])
prekey_service = PreKeyService()

ChallengeServiceDep = Annotated[ChallengeService, Depends(get_challenge_service)]


def _validated_key(field: str, raw: bytes) -> bytes:
    try:
        return CryptoService.validate_public_key(raw)
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {field}: {err}",
        ) from err


def _get_user(db: Session, user_id: bytes) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.post(
    "/register",
    summary="Register an identity public key",
    status_code=status.HTTP_201_CREATED,
)
async def register_user(payload: RegisterRequest, db: SessionDep) -> dict[str, Any]:
    """Store a new identity with its signed prekey and first batch of one-time prekeys."""
    identity_key = _validated_key("identityPublicKey", payload.identity_public_key)
    user_id = CryptoService.derive_user_id(identity_key)
    if db.get(User, user_id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Identity key is already registered",
        )

    user = User(
        user_id=user_id,
        identity_public_key=identity_key,
        display_name=payload.display_name,
    )
    if payload.signed_pre_key is not None:
        user.signed_prekey_id = payload.signed_pre_key.key_id
        user.signed_prekey_public = _validated_key("signedPreKey", payload.signed_pre_key.public_key)
        user.signed_prekey_signature = payload.signed_pre_key.signature
    db.add(user)

    try:
        published = prekey_service.publish(
            db,
            user,
            [(prekey.key_id, prekey.public_key) for prekey in payload.pre_keys],
        )
    except DuplicatePreKeyError as err:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(err)) from err
    except ValueError as err:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    db.commit()

    logger.info("Registered identity with %d one-time prekeys", published)
    return {
        "userId": encode_user_id(user_id),
        "accessToken": create_access_token(user_id),
        "tokenType": "bearer",
        "fingerprint": CryptoService.fingerprint(identity_key),
    }


@router.post("/challenge", summary="Issue a login challenge sealed to the identity key")
async def issue_challenge(
    payload: ChallengeRequest,
    db: SessionDep,
    challenges: ChallengeServiceDep,
) -> dict[str, Any]:
    """Return an envelope only the identity secret key can open."""
    user = _get_user(db, payload.user_id)
    sealed = challenges.issue(user.user_id, user.identity_public_key)
    return {
        "challenge": sealed.to_payload(),
        "expiresIn": challenges.ttl_seconds,
    }


@router.post("/login", summary="Authenticate with a decrypted challenge")
async def login_user(
    payload: LoginRequest,
    db: SessionDep,
    challenges: ChallengeServiceDep,
) -> dict[str, Any]:
    """Exchange a decrypted challenge for an access token."""
    user = _get_user(db, payload.user_id)
    try:
        challenges.verify(user.user_id, payload.response)
    except ChallengeError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Authentication failed: {err}",
        ) from err

    return {
        "accessToken": create_access_token(user.user_id),
        "tokenType": "bearer",
        "expiresIn": settings.access_token_expire_minutes * 60,
    }
