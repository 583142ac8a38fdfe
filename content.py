"""
Posts and comments.

Mutations check the authorization gate before touching the store. Collection
reads go through the orphan reconciler; reads by id do not.
"""

from typing import List, Optional

from app_logging import get_logger
from assets import AssetStore
from authorization import Action, Resource, Session, authorize, require
from cascade import CascadeDeleter
from database import DocumentStore
from errors import NotFound, ValidationError
from reconciler import OrphanReconciler
from schemas import COMMENT, POST, USER, Comment, Post

logger = get_logger(__name__)

MAX_COMMENT_LENGTH = 5000


def _author(users: dict, user_id: str) -> Optional[dict]:
    user = users.get(user_id)
    return {"id": user["id"], "username": user["username"]} if user else None


def _populate(doc: dict, ref: str, users: dict) -> dict:
    out = {k: v for k, v in doc.items() if k != ref}
    out["author"] = _author(users, doc.get(ref))
    return out


def _load_author(store: DocumentStore, user_id: str) -> dict:
    user = store.get(USER, user_id)
    return {user_id: user} if user else {}


def _required(value: Optional[str], name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{name} is required")
    return value


# ----------------- Posts -----------------

def create_post(
    store: DocumentStore,
    assets: AssetStore,
    session: Optional[Session],
    title: str,
    summary: str,
    content: str,
    cover: Optional[bytes],
    cover_type: Optional[str],
) -> dict:
    require(authorize(session, Action.CREATE_POST))
    post = {
        "title": _required(title, "Title"),
        "summary": _required(summary, "Summary"),
        "content": _required(content, "Content"),
    }
    if not cover:
        raise ValidationError("Cover image is required")

    asset = assets.store(cover, cover_type)
    post_id = store.create(POST, Post(cover=asset.url, cover_key=asset.key, author_id=session.user_id, **post))
    logger.info("Post %s created by %s", post_id, session.user_id)
    return get_post(store, post_id)


def get_post(store: DocumentStore, post_id: str) -> dict:
    post = store.get(POST, post_id)
    if not post:
        raise NotFound("Post not found")
    return _populate(post, "author_id", _load_author(store, post["author_id"]))


def list_posts(reconciler: OrphanReconciler) -> List[dict]:
    result = reconciler.live_posts()
    return [_populate(p, "author_id", result.users) for p in result.records]


def edit_post(
    store: DocumentStore,
    assets: AssetStore,
    session: Optional[Session],
    post_id: str,
    title: Optional[str] = None,
    summary: Optional[str] = None,
    content: Optional[str] = None,
    cover: Optional[bytes] = None,
    cover_type: Optional[str] = None,
) -> dict:
    post = store.get(POST, post_id)
    if not post:
        raise NotFound("Post not found")
    require(authorize(session, Action.EDIT_POST, Resource(post_id, post["author_id"])))

    patch = {}
    for name, value in (("title", title), ("summary", summary), ("content", content)):
        if value and value.strip():
            patch[name] = value.strip()

    if cover:
        asset = assets.store(cover, cover_type)
        patch["cover"] = asset.url
        patch["cover_key"] = asset.key

    if patch:
        store.update_by_id(POST, post_id, patch)
        if cover:
            assets.delete(post.get("cover_key"))
    return get_post(store, post_id)


def delete_post(
    store: DocumentStore,
    cascade: CascadeDeleter,
    session: Optional[Session],
    post_id: str,
) -> None:
    post = store.get(POST, post_id)
    if not post:
        raise NotFound("Post not found")
    require(authorize(session, Action.DELETE_POST, Resource(post_id, post["author_id"])))
    cascade.delete_post(post_id)


# ----------------- Comments -----------------

def _comment_content(content: Optional[str]) -> str:
    content = _required(content, "Comment content")
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment is too long (max {MAX_COMMENT_LENGTH} characters)")
    return content


def create_comment(store: DocumentStore, session: Optional[Session], post_id: str, content: str) -> dict:
    require(authorize(session, Action.CREATE_COMMENT))
    content = _comment_content(content)
    if not store.get(POST, post_id):
        raise NotFound("Post not found")
    comment_id = store.create(COMMENT, Comment(post_id=post_id, author_id=session.user_id, content=content))
    return _populate(store.get(COMMENT, comment_id), "author_id", _load_author(store, session.user_id))


def list_comments(reconciler: OrphanReconciler, post_id: str) -> List[dict]:
    result = reconciler.live_comments(post_id)
    return [_populate(c, "author_id", result.users) for c in result.records]


def edit_comment(store: DocumentStore, session: Optional[Session], comment_id: str, content: str) -> dict:
    comment = store.get(COMMENT, comment_id)
    if not comment:
        raise NotFound("Comment not found")
    require(authorize(session, Action.EDIT_COMMENT, Resource(comment_id, comment["author_id"])))
    updated = store.update_by_id(COMMENT, comment_id, {"content": _comment_content(content)})
    if not updated:
        raise NotFound("Comment not found")
    return _populate(updated, "author_id", _load_author(store, updated["author_id"]))


def delete_comment(store: DocumentStore, session: Optional[Session], comment_id: str) -> None:
    comment = store.get(COMMENT, comment_id)
    if not comment:
        raise NotFound("Comment not found")
    require(authorize(session, Action.DELETE_COMMENT, Resource(comment_id, comment["author_id"])))
    store.delete_by_id(COMMENT, comment_id)
