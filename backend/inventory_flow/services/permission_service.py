# Overview: Service-layer operations for permission; resolves the acting user and enforces role rules.

"""
Actor checks shared by every write operation.

Fail closed: an unknown, unapproved or deactivated user cannot act at all;
administrator-only operations check the role on the freshly loaded user
row, never on anything the caller passed in.
"""

from __future__ import annotations

from ..extensions import db
from ..models import User
from .errors import ForbiddenError


def get_actor(actor_user_id: int | None) -> User:
    """Load the acting user; ForbiddenError unless approved and active."""
    if actor_user_id is None:
        raise ForbiddenError("An authenticated user is required")

    user = db.session.get(User, actor_user_id)
    if user is None or not user.can_act:
        raise ForbiddenError(
            "User is not allowed to act",
            details={"actor_user_id": actor_user_id},
        )
    return user


def require_admin(actor_user_id: int | None) -> User:
    user = get_actor(actor_user_id)
    if not user.is_admin:
        raise ForbiddenError(
            "Administrator role required",
            details={"actor_user_id": actor_user_id},
        )
    return user


def require_owner_or_admin(actor_user_id: int | None, owner_user_id: int) -> User:
    """Owners may act on their own documents; administrators on any."""
    user = get_actor(actor_user_id)
    if not user.is_admin and user.id != owner_user_id:
        raise ForbiddenError(
            "Only the creator or an administrator may do this",
            details={"actor_user_id": actor_user_id, "owner_user_id": owner_user_id},
        )
    return user
