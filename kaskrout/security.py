from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import bcrypt
from fastapi import Depends, Header
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from kaskrout.config import settings
from kaskrout.db import get_db
from kaskrout.errors import ForbiddenError, UnauthorizedError
from kaskrout.models import ROLES, SessionToken, User

PRIVILEGED = frozenset({"vip", "admin"})
EVERYONE = frozenset(ROLES)

WRITE_POLICY: dict[str, frozenset[str]] = {
    "catalog": PRIVILEGED,
    "users": PRIVILEGED,
    "daily": EVERYONE,
    "purchases": EVERYONE,
    "sales": EVERYONE,
    "expenses": EVERYONE,
    "leftovers": EVERYONE,
}


@dataclass(frozen=True)
class Identity:
    id: int
    name: str
    role: str
    token_id: int


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode()


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def issue_token(db: Session, user: User) -> str:
    token = secrets.token_urlsafe(32)
    issued_at = datetime.now(timezone.utc)
    # drop this user's dead sessions so the table does not grow with every login
    db.execute(
        delete(SessionToken).where(
            SessionToken.user_id == user.id,
            or_(SessionToken.expires_at <= issued_at, SessionToken.revoked_at.is_not(None)),
        )
        .execution_options(synchronize_session=False)
    )
    db.add(
        SessionToken(
            user_id=user.id,
            token_hash=_digest(token),
            created_at=issued_at,
            expires_at=issued_at + timedelta(hours=settings.token_ttl_hours),
        )
    )
    db.commit()
    return token


def revoke_token(db: Session, token_id: int) -> None:
    session_token = db.get(SessionToken, token_id)
    if session_token is not None and session_token.revoked_at is None:
        session_token.revoked_at = datetime.now(timezone.utc)
        db.commit()


def authenticate(db: Session, token: str) -> Identity:
    session_token = db.execute(
        select(SessionToken).where(SessionToken.token_hash == _digest(token))
    ).scalar_one_or_none()
    if session_token is None or session_token.revoked_at is not None:
        raise UnauthorizedError("not authorized, token failed")
    if _utc(session_token.expires_at) <= datetime.now(timezone.utc):
        raise UnauthorizedError("not authorized, token expired")
    user = session_token.user
    return Identity(id=user.id, name=user.name, role=user.role, token_id=session_token.id)


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Identity:
    if not authorization:
        raise UnauthorizedError("not authorized, no token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("not authorized, no token")
    return authenticate(db, token.strip())


def can_write(role: str, resource: str) -> bool:
    return role in WRITE_POLICY.get(resource, frozenset())


def require_write(resource: str) -> Callable[..., Identity]:
    def dependency(identity: Identity = Depends(get_current_user)) -> Identity:
        if not can_write(identity.role, resource):
            raise ForbiddenError("forbidden: insufficient privileges")
        return identity

    return dependency
