# Overview: Service-layer operations for bearer tokens; issue, resolve and revoke API credentials.

"""
Bearer tokens for API callers.

Login screens and password handling live outside this service; tokens are
issued by an administrator through `flask users issue-token`. Only the
SHA-256 digest of a token is stored, each token expires SESSION_TTL_HOURS
after issue, and any token can be revoked.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow
from .errors import InvalidArgumentError, NotFoundError


# last_used_at is only rewritten when it is older than this
TOUCH_INTERVAL = timedelta(minutes=1)


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    """64 hex characters (32 random bytes); handed to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens are high-entropy, so an unsalted fast digest is enough
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _find_unrevoked(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def create_session(user_id: int, ttl_hours: int | None = None) -> tuple[SessionToken, str]:
    """Issue a token for an approved, active user. Returns (record, plaintext)."""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
    if not user.can_act:
        raise InvalidArgumentError(
            "User must be approved and active before a token is issued",
            details={"user_id": user_id},
        )

    token = generate_token()
    now = utcnow()
    record = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=ttl_hours or current_app.config.get("SESSION_TTL_HOURS", 24)),
    )
    db.session.add(record)
    db.session.commit()
    return record, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its user.

    None for unknown, expired or revoked tokens, and for users who are no
    longer approved or active.
    """
    record = _find_unrevoked(token)
    now = utcnow()
    if record is None or record.expires_at < now:
        return None

    user = record.user
    if user is None or not user.can_act:
        return None

    if now - record.last_used_at > TOUCH_INTERVAL:
        record.last_used_at = now
        db.session.commit()

    return SessionContext(user=user, session=record)


def revoke_session(token: str) -> bool:
    """False if the token was unknown or already revoked."""
    record = _find_unrevoked(token)
    if record is None:
        return False
    record.is_revoked = True
    record.revoked_at = utcnow()
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int) -> int:
    now = utcnow()
    records = (
        db.session.query(SessionToken)
        .filter(SessionToken.user_id == user_id, SessionToken.is_revoked.is_(False))
        .all()
    )
    for record in records:
        record.is_revoked = True
        record.revoked_at = now
    db.session.commit()
    return len(records)
