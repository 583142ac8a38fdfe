import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import accounts
import content
import database
import reactions
from app_logging import configure_logging, get_logger
from assets import AssetStore, configure_cloudinary
from authorization import Action, Session, authorize, require
from cascade import CascadeDeleter
from config import settings
from database import DocumentStore
from dependencies import (
    get_assets,
    get_cascade,
    get_codec,
    get_reconciler,
    get_store,
    require_session,
)
from errors import (
    AppError,
    InvalidOrExpiredSession,
    NotFound,
    SubjectNotFound,
    TransientStoreError,
    ValidationError,
)
from reconciler import OrphanReconciler
from schemas import (
    POST,
    USER,
    VISITOR,
    CommentRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ReactionRequest,
    ReactionType,
    RegisterRequest,
    ResetPasswordRequest,
    Visitor,
    VisitorRequest,
)
from security import SessionCodec

configure_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_cloudinary()
    if database.store is not None:
        try:
            database.store.ensure_indexes()
        except TransientStoreError:
            logger.warning("Could not ensure indexes at startup; database unreachable")
    yield


app = FastAPI(
    title="Content Sharing API",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------- Errors -----------------

def _clear_session_cookie(response):
    response.delete_cookie(
        settings.COOKIE_NAME,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    response = JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )
    if isinstance(exc, (InvalidOrExpiredSession, SubjectNotFound)):
        _clear_session_cookie(response)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"error": ValidationError.code, "message": message or "Invalid request"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error on %s %s (params=%s, query=%s)",
        request.method, request.url.path, request.path_params, dict(request.query_params),
    )
    body = {"error": "SERVER_ERROR", "message": "An unexpected error occurred"}
    if not settings.is_production:
        body["details"] = str(exc)
    return JSONResponse(status_code=500, content=body)


@app.get("/")
def read_root():
    return {"message": "Content Sharing API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "collections": [],
    }
    db = database.db
    if db is not None:
        response["database_name"] = db.name
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# ----------------- Auth -----------------

def jsonable_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "username": user["username"],
        "email": user["email"],
        "is_admin": bool(user.get("is_admin", False)),
    }


@app.post("/register")
def register(req: RegisterRequest, store: DocumentStore = Depends(get_store)):
    user_id = accounts.register(store, req.username, req.email, req.password)
    return {"message": "Registration successful", "id": user_id}


@app.post("/login")
def login(
    req: LoginRequest,
    store: DocumentStore = Depends(get_store),
    codec: SessionCodec = Depends(get_codec),
):
    user, token = accounts.login(store, codec, req.email, req.password)
    response = JSONResponse({**jsonable_user(user), "token": token})
    response.set_cookie(
        settings.COOKIE_NAME,
        token,
        max_age=int(codec.ttl.total_seconds()),
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )
    return response


@app.post("/logout")
def logout():
    response = JSONResponse({"message": "Logged out successfully"})
    _clear_session_cookie(response)
    return response


@app.post("/forgot-password")
def forgot_password(req: ForgotPasswordRequest, store: DocumentStore = Depends(get_store)):
    code = accounts.request_password_reset(store, req.email)
    body = {
        "message": "Reset code generated successfully",
        "expiresIn": f"{settings.RESET_CODE_TTL_MINUTES} minutes",
    }
    # Outside production there is no mail delivery; hand the code back directly.
    if not settings.is_production:
        body["resetCode"] = code
    return body


@app.post("/reset-password")
def reset_password(req: ResetPasswordRequest, store: DocumentStore = Depends(get_store)):
    accounts.confirm_password_reset(store, req.email, req.reset_code, req.new_password)
    return {"message": "Password updated successfully"}


@app.get("/profile")
def profile(session: Session = Depends(require_session)):
    require(authorize(session, Action.VIEW_PROFILE))
    return {
        "id": session.user_id,
        "username": session.username,
        "email": session.email,
        "is_admin": session.is_admin,
    }


# ----------------- Posts -----------------

def _read_upload(file: Optional[UploadFile]):
    if file is None:
        return None, None
    return file.file.read(), file.content_type


@app.post("/post", status_code=201)
def create_post(
    title: str = Form(""),
    summary: str = Form(""),
    content_text: str = Form("", alias="content"),
    file: Optional[UploadFile] = File(None),
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
    assets: AssetStore = Depends(get_assets),
):
    data, content_type = _read_upload(file)
    return content.create_post(store, assets, session, title, summary, content_text, data, content_type)


@app.get("/posts")
def list_posts(reconciler: OrphanReconciler = Depends(get_reconciler)):
    return content.list_posts(reconciler)


@app.get("/post/{post_id}")
def get_post(post_id: str, store: DocumentStore = Depends(get_store)):
    return content.get_post(store, post_id)


@app.put("/post/{post_id}")
def edit_post(
    post_id: str,
    title: Optional[str] = Form(None),
    summary: Optional[str] = Form(None),
    content_text: Optional[str] = Form(None, alias="content"),
    file: Optional[UploadFile] = File(None),
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
    assets: AssetStore = Depends(get_assets),
):
    data, content_type = _read_upload(file)
    return content.edit_post(store, assets, session, post_id, title, summary, content_text, data, content_type)


@app.delete("/post/{post_id}")
def delete_post(
    post_id: str,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
    cascade: CascadeDeleter = Depends(get_cascade),
):
    content.delete_post(store, cascade, session, post_id)
    return {"message": "Post and associated content deleted successfully"}


# ----------------- Comments -----------------

@app.get("/post/{post_id}/comments")
def list_comments(post_id: str, reconciler: OrphanReconciler = Depends(get_reconciler)):
    return content.list_comments(reconciler, post_id)


@app.post("/post/{post_id}/comment", status_code=201)
def create_comment(
    post_id: str,
    req: CommentRequest,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
):
    return content.create_comment(store, session, post_id, req.content)


@app.put("/comment/{comment_id}")
def edit_comment(
    comment_id: str,
    req: CommentRequest,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
):
    return content.edit_comment(store, session, comment_id, req.content)


@app.delete("/comment/{comment_id}")
def delete_comment(
    comment_id: str,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
):
    content.delete_comment(store, session, comment_id)
    return {"message": "Comment deleted successfully"}


# ----------------- Reactions -----------------

@app.get("/post/{post_id}/reactions")
def reaction_counts(
    post_id: str,
    store: DocumentStore = Depends(get_store),
    reconciler: OrphanReconciler = Depends(get_reconciler),
):
    return reactions.get_reaction_counts(store, reconciler, post_id)


@app.post("/post/{post_id}/addreaction")
def add_reaction(
    post_id: str,
    req: ReactionRequest,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
):
    require(authorize(session, Action.SET_REACTION))
    if not store.get(POST, post_id):
        raise NotFound("Post not found")
    result = reactions.set_reaction(store, post_id, session.user_id, req.type)
    if result is reactions.ToggleResult.REMOVED:
        return {"message": "Reaction removed successfully", "result": result.value}
    return {"message": "Reaction added successfully", "result": result.value}


@app.get("/post/{post_id}/reactions/users/{reaction_type}")
def reaction_users(
    post_id: str,
    reaction_type: ReactionType,
    reconciler: OrphanReconciler = Depends(get_reconciler),
):
    return reactions.list_reaction_users(reconciler, post_id, reaction_type)


# ----------------- Admin -----------------

@app.get("/admin/users")
def admin_list_users(
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
):
    return accounts.list_users(store, session)


@app.delete("/admin/users/{user_id}")
def admin_delete_user(
    user_id: str,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
    cascade: CascadeDeleter = Depends(get_cascade),
):
    accounts.delete_user(store, cascade, session, user_id)
    return {"message": "User and all associated content deleted successfully"}


@app.get("/admin/users/{user_id}/stats")
def admin_user_stats(
    user_id: str,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
):
    return accounts.user_stats(store, session, user_id)


@app.patch("/admin/users/{user_id}/role")
def admin_toggle_role(
    user_id: str,
    session: Session = Depends(require_session),
    store: DocumentStore = Depends(get_store),
):
    user = accounts.toggle_admin(store, session, user_id)
    role = "Admin" if user["is_admin"] else "User"
    return {"message": f"User role updated successfully. New role: {role}", "is_admin": user["is_admin"]}


# ----------------- Visitors -----------------

@app.post("/api/visitors", status_code=201)
def add_visitor(req: VisitorRequest, store: DocumentStore = Depends(get_store)):
    if not req.city.strip() or not req.country.strip():
        raise ValidationError("City and country are required")
    store.create(VISITOR, Visitor(city=req.city.strip(), country=req.country.strip()))
    return {"count": store.count(VISITOR)}


@app.get("/api/visitors")
def visitor_count(store: DocumentStore = Depends(get_store)):
    return {"count": store.count(VISITOR)}


@app.get("/api/user-count")
def user_count(store: DocumentStore = Depends(get_store)):
    return {"count": store.count(USER)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
