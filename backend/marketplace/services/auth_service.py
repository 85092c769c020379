# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Dashboard Authentication

WHY: Every inventory adjustment, fulfillment and manual payment change is
attributable to a user. Passwords are hashed with bcrypt (cost factor 12);
session tokens are handled by session_service.

Store access is membership-based: a user sees the stores listed in
StoreMember, an admin sees every store.
"""

from __future__ import annotations

import re

import bcrypt

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Store, StoreMember, User
from ..validation import parse_email

MIN_PASSWORD_LENGTH = 8


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    email: str,
    password: str,
    *,
    name: str | None = None,
    is_admin: bool = False,
    store_id: int | None = None,
    role: str = "owner",
) -> User:
    """
    Create a user and, optionally, their first store membership.

    Raises ValidationError for a duplicate email or a weak password, and
    NotFoundError when store_id does not exist.
    """
    email = parse_email(email)
    if db.session.query(User.id).filter_by(email=email).first() is not None:
        raise ValidationError("A user with this email already exists")

    if store_id is not None and db.session.get(Store, store_id) is None:
        raise NotFoundError("Store not found")

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        is_admin=is_admin,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()

    if store_id is not None:
        db.session.add(StoreMember(store_id=store_id, user_id=user.id, role=role))

    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user matching the credentials, or None."""
    if not email or not password:
        return None
    user = (
        db.session.query(User)
        .filter(User.email == email.strip().lower(), User.is_active.is_(True))
        .first()
    )
    if user is None:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
