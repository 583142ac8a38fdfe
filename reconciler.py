"""
Orphan reconciliation for list reads.

Users can disappear without their content being cleaned up (an interrupted
cascade, a manual delete in the database). Every collection read goes through
here: candidates whose parents no longer resolve are dropped from the result
and deleted on the spot. Single-item reads and writes never come through here.

Cleanup is best-effort. Running it twice at once only produces duplicate
deletes, which are no-ops, and a cleanup failure is logged while the read still
returns the valid records.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app_logging import get_logger
from cascade import CascadeDeleter
from database import DocumentStore
from schemas import COMMENT, POST, REACTION, USER

logger = get_logger(__name__)

NEWEST_FIRST = [("created_at", -1)]

# (reference field on the record, collection it points into)
Reference = Tuple[str, str]


@dataclass
class Reconciled:
    records: List[dict]
    users: Dict[str, dict] = field(default_factory=dict)
    purged: int = 0


class OrphanReconciler:
    def __init__(self, store: DocumentStore, cascade: CascadeDeleter):
        self.store = store
        self.cascade = cascade

    def _resolve(self, collection: str, ids: Iterable[str]) -> Dict[str, dict]:
        ids = sorted({i for i in ids if i})
        if not ids:
            return {}
        projection = {"password_hash": 0, "reset_token_hash": 0, "reset_expires_at": 0} if collection == USER else None
        return {doc["id"]: doc for doc in self.store.find(collection, {"id": {"$in": ids}}, projection=projection)}

    def _partition(self, records: List[dict], references: Sequence[Reference]):
        resolved = {
            collection: self._resolve(collection, (r.get(ref) for r in records))
            for ref, collection in references
        }
        valid, orphans = [], []
        for record in records:
            if all(record.get(ref) in resolved[collection] for ref, collection in references):
                valid.append(record)
            else:
                orphans.append(record)
        return valid, orphans, resolved

    def _purge(self, collection: str, orphans: List[dict]) -> int:
        if not orphans:
            return 0
        ids = [o["id"] for o in orphans]
        logger.info("Purging %d orphaned %s record(s): %s", len(ids), collection, ids)
        try:
            if collection == POST:
                return self.cascade.purge_posts(orphans)
            return self.store.delete_many(collection, {"id": {"$in": ids}})
        except Exception:
            logger.exception("Orphan cleanup of %s %s failed", collection, ids)
            return 0

    def live_posts(self, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> Reconciled:
        posts = self.store.find(POST, filter_dict or {}, sort=NEWEST_FIRST, limit=limit)
        valid, orphans, resolved = self._partition(posts, [("author_id", USER)])
        purged = self._purge(POST, orphans)
        return Reconciled(valid, resolved[USER], purged)

    def live_comments(self, post_id: str) -> Reconciled:
        comments = self.store.find(COMMENT, {"post_id": post_id}, sort=NEWEST_FIRST)
        valid, orphans, resolved = self._partition(comments, [("author_id", USER), ("post_id", POST)])
        purged = self._purge(COMMENT, orphans)
        return Reconciled(valid, resolved[USER], purged)

    def live_reactions(self, post_id: str, reaction_type: Optional[str] = None) -> Reconciled:
        query = {"post_id": post_id}
        if reaction_type:
            query["type"] = reaction_type
        reactions = self.store.find(REACTION, query, sort=NEWEST_FIRST)
        valid, orphans, resolved = self._partition(reactions, [("user_id", USER), ("post_id", POST)])
        purged = self._purge(REACTION, orphans)
        return Reconciled(valid, resolved[USER], purged)
