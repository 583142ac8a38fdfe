"""
Registration, login, password reset and admin user management.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app_logging import get_logger
from authorization import Action, Resource, Session, authorize, require
from cascade import CascadeDeleter
from config import settings
from database import DocumentStore
from errors import ConflictError, NotFound, ValidationError
from schemas import COMMENT, POST, REACTION, USER, User
from security import (
    SessionCodec,
    generate_reset_code,
    hash_password,
    reset_code_expiry,
    verify_password,
)

logger = get_logger(__name__)

PRIVATE_FIELDS = ("password_hash", "reset_token_hash", "reset_expires_at")


def to_public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k not in PRIVATE_FIELDS}


def _find_one(store: DocumentStore, filter_dict: dict) -> Optional[dict]:
    found = store.find(USER, filter_dict, limit=1)
    return found[0] if found else None


# ----------------- Registration / Login -----------------

def register(store: DocumentStore, username: str, email: str, password: str) -> str:
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if len(username) < 4:
        raise ValidationError("Username must be at least 4 characters")
    if not password:
        raise ValidationError("Password is required")

    existing = _find_one(store, {"$or": [{"username": username}, {"email": email}]})
    if existing:
        if existing["username"] == username:
            raise ValidationError("Username already exists")
        raise ValidationError("Email already registered")

    try:
        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            is_admin=bool(settings.ADMIN_EMAIL) and email == settings.ADMIN_EMAIL.lower(),
        )
    except PydanticValidationError as e:
        raise ValidationError("Invalid email address") from e
    try:
        user_id = store.create(USER, user)
    except ConflictError as e:
        # Lost a race against another registration with the same username/email.
        raise ValidationError("Username or email already registered") from e
    logger.info("Registered user %s (%s)", user_id, username)
    return user_id


def login(store: DocumentStore, codec: SessionCodec, email: str, password: str) -> Tuple[dict, str]:
    user = _find_one(store, {"email": (email or "").strip().lower()})
    if not user or not verify_password(password, user.get("password_hash")):
        raise ValidationError("Invalid email or password")
    return to_public_user(user), codec.issue(user)


# ----------------- Password Reset -----------------

def request_password_reset(store: DocumentStore, email: str) -> str:
    """Store the hash of a fresh reset code on the user and return the plain code.

    Delivering the code to the user is someone else's job.
    """
    user = _find_one(store, {"email": (email or "").strip().lower()})
    if not user:
        raise NotFound("User not found")
    code = generate_reset_code()
    store.update_by_id(USER, user["id"], {
        "reset_token_hash": hash_password(code),
        "reset_expires_at": reset_code_expiry(),
    })
    logger.info("Reset code issued for user %s", user["id"])
    return code


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def confirm_password_reset(store: DocumentStore, email: str, code: str, new_password: str) -> None:
    if not new_password:
        raise ValidationError("New password is required")
    user = _find_one(store, {"email": (email or "").strip().lower()})
    expires = user.get("reset_expires_at") if user else None
    if not expires or _as_utc(expires) <= datetime.now(timezone.utc):
        raise ValidationError("Invalid or expired reset code")
    if not verify_password(code, user.get("reset_token_hash")):
        raise ValidationError("Invalid reset code")

    store.update_by_id(USER, user["id"], {
        "password_hash": hash_password(new_password),
        "reset_token_hash": None,
        "reset_expires_at": None,
    })
    logger.info("Password reset completed for user %s", user["id"])


# ----------------- Admin -----------------

def list_users(store: DocumentStore, session: Optional[Session]) -> List[dict]:
    require(authorize(session, Action.LIST_USERS))
    projection = {field: 0 for field in PRIVATE_FIELDS}
    return [to_public_user(u) for u in store.find(USER, {}, sort=[("created_at", -1)], projection=projection)]


def user_stats(store: DocumentStore, session: Optional[Session], user_id: str) -> dict:
    require(authorize(session, Action.VIEW_USER_STATS, Resource(id=user_id)))
    return {
        "postsCount": store.count(POST, {"author_id": user_id}),
        "commentsCount": store.count(COMMENT, {"author_id": user_id}),
        "reactionsCount": store.count(REACTION, {"user_id": user_id}),
    }


def toggle_admin(store: DocumentStore, session: Optional[Session], user_id: str) -> dict:
    require(authorize(session, Action.TOGGLE_ADMIN, Resource(id=user_id)))
    user = store.get(USER, user_id)
    if not user:
        raise NotFound("User not found")
    updated = store.update_by_id(USER, user_id, {"is_admin": not user.get("is_admin", False)})
    if not updated:
        raise NotFound("User not found")
    logger.info("User %s admin flag set to %s by %s", user_id, updated["is_admin"], session.user_id)
    return to_public_user(updated)


def delete_user(store: DocumentStore, cascade: CascadeDeleter, session: Optional[Session], user_id: str) -> None:
    require(authorize(session, Action.DELETE_USER, Resource(id=user_id)))
    if not store.get(USER, user_id):
        raise NotFound("User not found")
    cascade.delete_user(user_id)
    logger.info("User %s deleted by admin %s", user_id, session.user_id)
