# dependencies.py
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import database
from app_logging import get_logger
from assets import AssetStore, CloudinaryAssetStore
from authorization import Session
from cascade import CascadeDeleter
from config import settings
from database import DocumentStore
from errors import AuthRequired, SubjectNotFound, TransientStoreError
from reconciler import OrphanReconciler
from schemas import USER
from security import SessionCodec, session_codec

logger = get_logger(__name__)

# auto_error=False: the token may also arrive as a cookie.
bearer = HTTPBearer(auto_error=False, description="Session token (JWT)")

_asset_store = CloudinaryAssetStore(settings.ASSET_FOLDER, settings.ASSET_TIMEOUT_SECONDS)


def get_store() -> DocumentStore:
    if database.store is None:
        raise TransientStoreError("Database not available. Set DATABASE_URL.")
    return database.store


def get_assets() -> AssetStore:
    return _asset_store


def get_codec() -> SessionCodec:
    return session_codec


def get_cascade(
    store: DocumentStore = Depends(get_store),
    assets: AssetStore = Depends(get_assets),
) -> CascadeDeleter:
    return CascadeDeleter(store, assets)


def get_reconciler(
    store: DocumentStore = Depends(get_store),
    cascade: CascadeDeleter = Depends(get_cascade),
) -> OrphanReconciler:
    return OrphanReconciler(store, cascade)


def get_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    store: DocumentStore = Depends(get_store),
    codec: SessionCodec = Depends(get_codec),
) -> Optional[Session]:
    """Resolve the caller's live session, or None when no token was sent.

    The token only tells us who the caller was when it was issued. The user is
    read back from the store on every request: a deleted user gets
    SubjectNotFound, and the admin flag always comes from the store.
    """
    # An explicit Authorization header wins over a possibly stale cookie.
    token = credentials.credentials if credentials else request.cookies.get(settings.COOKIE_NAME)
    if not token:
        return None

    claims = codec.verify(token)
    user = store.get(USER, claims.user_id)
    if not user:
        logger.info("Session for deleted user %s rejected", claims.user_id)
        raise SubjectNotFound()

    return Session(
        user_id=user["id"],
        username=user["username"],
        email=user["email"],
        is_admin=bool(user.get("is_admin", False)),
    )


def require_session(session: Optional[Session] = Depends(get_session)) -> Session:
    if session is None:
        raise AuthRequired()
    return session
