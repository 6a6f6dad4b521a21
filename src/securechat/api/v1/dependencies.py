"""Shared API dependencies for authentication and common functionality."""

from datetime import datetime
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from securechat.core.settings import settings
from securechat.db.session import get_db
from securechat.db.time import utcnow
from securechat.models import User
from securechat.services.events import EventBroker, get_event_broker
from securechat.utils.encoding import decode_user_id

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def resolve_token(db: Session, token: str) -> User | None:
    """Return the user a bearer token was issued to, or None if it does not validate."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not isinstance(subject, str):
        return None
    try:
        user_id = decode_user_id(subject)
    except ValueError:
        return None
    return db.get(User, user_id)


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    user = resolve_token(db, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


def get_now() -> datetime:
    """Current time used for lifecycle decisions; overridden in tests."""
    return utcnow()


def parse_user_id(value: str) -> bytes:
    """Decode a user id taken from the URL path.

    Raises:
        HTTPException: 400 if ``value`` is not a valid identifier
    """
    try:
        user_id = decode_user_id(value)
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    if not user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty user identifier")
    return user_id


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
NowDep = Annotated[datetime, Depends(get_now)]
BrokerDep = Annotated[EventBroker, Depends(get_event_broker)]
