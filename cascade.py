"""
Cascade deletion of posts and users.

The store has no foreign keys and no multi-document transactions, so deleting
a post or a user means deleting everything that points at it ourselves. Each
step is an idempotent delete; a failed cascade is fixed by calling it again,
never by rolling back.

Ordering rule: a parent record is deleted only after all of its dependents
are gone. If a dependent delete fails the parent stays, which leaves the data
in a "parent still visible, some children gone" state that a retry can finish.
"""

from concurrent.futures import ThreadPoolExecutor

from app_logging import get_logger
from assets import AssetStore
from database import DocumentStore
from errors import AppError, CascadeIncomplete
from schemas import COMMENT, POST, REACTION, USER

logger = get_logger(__name__)


class CascadeDeleter:
    def __init__(self, store: DocumentStore, assets: AssetStore):
        self.store = store
        self.assets = assets

    def _delete_asset(self, key) -> bool:
        try:
            return self.assets.delete(key)
        except Exception:
            logger.exception("Asset %s could not be deleted; continuing", key)
            return False

    def delete_post(self, post_id: str) -> bool:
        """Delete a post, its comments, its reactions and its cover.

        Returns False if the post was already gone. Raises CascadeIncomplete
        if any dependent delete failed; the post is then left in place.
        """
        post = self.store.get(POST, post_id)
        if not post:
            logger.info("Post %s not found; nothing to delete", post_id)
            return False

        self._delete_asset(post.get("cover_key"))

        # Comments and reactions are independent; both must finish before the post goes.
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="cascade") as pool:
            futures = {
                COMMENT: pool.submit(self.store.delete_many, COMMENT, {"post_id": post_id}),
                REACTION: pool.submit(self.store.delete_many, REACTION, {"post_id": post_id}),
            }
        failed = []
        for collection, future in futures.items():
            exc = future.exception()
            if exc is not None:
                logger.error("Deleting %ss of post %s failed: %s", collection, post_id, exc)
                failed.append(collection)
            else:
                logger.debug("Deleted %d %ss of post %s", future.result(), collection, post_id)
        if failed:
            raise CascadeIncomplete(
                f"Could not delete {' and '.join(c + 's' for c in failed)} of post {post_id}; please retry"
            )

        self.store.delete_by_id(POST, post_id)
        logger.info("Post %s and related data deleted", post_id)
        return True

    def delete_user(self, user_id: str) -> bool:
        """Delete a user and everything they authored.

        Stops at the first post that fails to cascade, before touching the
        user record: without the user the leftovers could no longer be
        traced back and cleaned up. Returns False if the user was already gone.
        """
        for post in self.store.find(POST, {"author_id": user_id}):
            try:
                self.delete_post(post["id"])
            except AppError as e:
                logger.error("Cascade of post %s for user %s failed: %s", post["id"], user_id, e)
                raise CascadeIncomplete(
                    f"Could not delete all posts of user {user_id}; please retry"
                ) from e

        comments = self.store.delete_many(COMMENT, {"author_id": user_id})
        reactions = self.store.delete_many(REACTION, {"user_id": user_id})
        existed = self.store.delete_by_id(USER, user_id)
        logger.info(
            "User %s deleted (existed=%s, comments=%d, reactions=%d)",
            user_id, existed, comments, reactions,
        )
        return existed

    def purge_posts(self, posts: list) -> int:
        """Bulk variant used by the reconciler for posts whose author is gone."""
        if not posts:
            return 0
        ids = [p["id"] for p in posts]
        self.store.delete_many(REACTION, {"post_id": {"$in": ids}})
        self.store.delete_many(COMMENT, {"post_id": {"$in": ids}})
        for post in posts:
            self._delete_asset(post.get("cover_key"))
        return self.store.delete_many(POST, {"id": {"$in": ids}})
