"""
Authorization gate.

`authorize()` is a pure function of the caller's session, the action and the
ownership of the target resource. It performs no I/O; callers load the
resource first and call `require()` on the decision before mutating anything.

Rules, first match wins:
1. no session                                   -> AuthRequired
2. admin-only action, caller not admin          -> AdminRequired
3. owned resource, caller neither owner nor admin -> NotOwner
4. user-management action aimed at the caller   -> SelfModification
5. otherwise                                    -> Allow
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import AdminRequired, AuthRequired, NotOwner, SelfModification


@dataclass(frozen=True)
class Session:
    """A verified, live session. `is_admin` comes from the store, not the token."""

    user_id: str
    username: str
    email: str
    is_admin: bool


@dataclass(frozen=True)
class Resource:
    id: Optional[str] = None
    owner_id: Optional[str] = None


class Action(str, Enum):
    VIEW_PROFILE = "view_profile"
    CREATE_POST = "create_post"
    EDIT_POST = "edit_post"
    DELETE_POST = "delete_post"
    CREATE_COMMENT = "create_comment"
    EDIT_COMMENT = "edit_comment"
    DELETE_COMMENT = "delete_comment"
    SET_REACTION = "set_reaction"
    LIST_USERS = "list_users"
    VIEW_USER_STATS = "view_user_stats"
    DELETE_USER = "delete_user"
    TOGGLE_ADMIN = "toggle_admin"


ADMIN_ACTIONS = frozenset({
    Action.LIST_USERS,
    Action.VIEW_USER_STATS,
    Action.DELETE_USER,
    Action.TOGGLE_ADMIN,
})

OWNER_ACTIONS = frozenset({
    Action.EDIT_POST,
    Action.DELETE_POST,
    Action.EDIT_COMMENT,
    Action.DELETE_COMMENT,
})

# Resource.id is the target user's id for these.
SELF_PROTECTED_ACTIONS = frozenset({
    Action.DELETE_USER,
    Action.TOGGLE_ADMIN,
})


class DenyReason(str, Enum):
    AUTH_REQUIRED = "AuthRequired"
    ADMIN_REQUIRED = "AdminRequired"
    NOT_OWNER = "NotOwner"
    SELF_MODIFICATION = "SelfModification"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    def __bool__(self):
        return self.allowed


ALLOW = Decision(True)


def deny(reason: DenyReason) -> Decision:
    return Decision(False, reason)


def authorize(session: Optional[Session], action: Action, resource: Optional[Resource] = None) -> Decision:
    if session is None:
        return deny(DenyReason.AUTH_REQUIRED)

    if action in ADMIN_ACTIONS and not session.is_admin:
        return deny(DenyReason.ADMIN_REQUIRED)

    if action in OWNER_ACTIONS:
        owner = resource.owner_id if resource else None
        if owner != session.user_id and not session.is_admin:
            return deny(DenyReason.NOT_OWNER)

    if action in SELF_PROTECTED_ACTIONS and resource is not None and resource.id == session.user_id:
        return deny(DenyReason.SELF_MODIFICATION)

    return ALLOW


_ERRORS = {
    DenyReason.AUTH_REQUIRED: AuthRequired,
    DenyReason.ADMIN_REQUIRED: AdminRequired,
    DenyReason.NOT_OWNER: NotOwner,
    DenyReason.SELF_MODIFICATION: SelfModification,
}


def require(decision: Decision) -> None:
    """Raise the AppError matching a Deny decision."""
    if not decision.allowed:
        raise _ERRORS[decision.reason]()
