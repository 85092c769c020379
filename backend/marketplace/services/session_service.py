# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Bearer Session Tokens

WHY: Dashboard requests carry an opaque bearer token. The plaintext is
returned once at login; only its SHA-256 hash is stored, so a database leak
does not expose usable tokens.

SECURITY FEATURES:
- 32 bytes of entropy from secrets.token_hex
- Absolute expiry after SESSION_TTL_HOURS
- Revocable on logout or when the user is deactivated
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, StoreMember, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """Identity and tenant scope resolved from a valid token."""
    user: User
    session: SessionToken
    store_ids: list[int]

    @property
    def is_admin(self) -> bool:
        return bool(self.user.is_admin)


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough here: tokens are high-entropy, unlike passwords."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def member_store_ids(user_id: int) -> list[int]:
    rows = (
        db.session.query(StoreMember.store_id)
        .filter_by(user_id=user_id)
        .order_by(StoreMember.store_id.asc())
        .all()
    )
    return [row.store_id for row in rows]


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create a session for a user.

    Returns (session_record, plaintext_token). Raises ValueError if the user
    is missing or inactive.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is disabled")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + timedelta(hours=current_app.config["SESSION_TTL_HOURS"]),
        is_revoked=False,
    )
    db.session.add(session)
    user.last_login_at = now
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a plaintext token to a SessionContext.

    Returns None for unknown, expired or revoked tokens, and revokes the
    session when its user has been deactivated.
    """
    if not token:
        return None

    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    user = session.user
    if user is None or not user.is_active:
        session.is_revoked = True
        session.revoked_at = now
        db.session.commit()
        return None

    return SessionContext(user=user, session=session, store_ids=member_store_ids(user.id))


def revoke_session(token: str) -> bool:
    """Revoke a session. Returns False when the token is unknown or already revoked."""
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if session is None:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
