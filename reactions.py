"""
Reaction toggle protocol.

A user has at most one reaction per post. Sending the reaction they already
have removes it; sending a different one replaces it.

The check and the write are separate store calls, so two simultaneous
requests from the same user can both decide to create. The unique index on
(post_id, user_id) makes one of them fail with ConflictError; that request
retries once as a plain replace against whatever is stored by then. Only a
second conflict reaches the caller.
"""

from enum import Enum
from typing import Dict, List

from app_logging import get_logger
from database import DocumentStore
from errors import ConflictError
from reconciler import OrphanReconciler
from schemas import REACTION, Reaction, ReactionType

logger = get_logger(__name__)


class ToggleResult(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


def _replace(store: DocumentStore, post_id: str, user_id: str, reaction_type: ReactionType) -> str:
    store.delete_many(REACTION, {"post_id": post_id, "user_id": user_id})
    return store.create(REACTION, Reaction(post_id=post_id, user_id=user_id, type=reaction_type))


def set_reaction(store: DocumentStore, post_id: str, user_id: str, reaction_type: ReactionType) -> ToggleResult:
    reaction_type = ReactionType(reaction_type)
    existing = store.find(
        REACTION,
        {"post_id": post_id, "user_id": user_id, "type": reaction_type.value},
        limit=1,
    )
    if existing:
        store.delete_by_id(REACTION, existing[0]["id"])
        return ToggleResult.REMOVED

    try:
        _replace(store, post_id, user_id, reaction_type)
    except ConflictError:
        logger.warning(
            "Reaction race on post %s for user %s; retrying once", post_id, user_id
        )
        try:
            _replace(store, post_id, user_id, reaction_type)
        except ConflictError as e:
            logger.error("Reaction retry on post %s for user %s conflicted again", post_id, user_id)
            raise ConflictError("Reaction is being updated concurrently, please retry") from e
    return ToggleResult.ADDED


def empty_counts() -> Dict[str, int]:
    return {t.count_key: 0 for t in ReactionType}


def get_reaction_counts(store: DocumentStore, reconciler: OrphanReconciler, post_id: str) -> Dict[str, int]:
    """Counts per type for a post, e.g. {"likes": 2, "dislikes": 0, "loves": 0, "fires": 1}."""
    reconciler.live_reactions(post_id)
    counts = empty_counts()
    for value, count in store.aggregate_group_by(REACTION, {"post_id": post_id}, "type").items():
        try:
            counts[ReactionType(value).count_key] = count
        except ValueError:
            logger.warning("Ignoring unknown reaction type %r on post %s", value, post_id)
    return counts


def list_reaction_users(reconciler: OrphanReconciler, post_id: str, reaction_type: ReactionType) -> List[dict]:
    result = reconciler.live_reactions(post_id, ReactionType(reaction_type).value)
    return [
        {"id": r["user_id"], "username": result.users[r["user_id"]]["username"]}
        for r in result.records
    ]
