"""
Database Schemas for the content-sharing backend

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name. Example: class User -> "user" collection.

References between collections are plain string ids; the database does not
enforce them (see cascade.py and reconciler.py).
"""

from enum import Enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

USER = "user"
POST = "post"
COMMENT = "comment"
REACTION = "reaction"
VISITOR = "visitor"


class ReactionType(str, Enum):
    like = "like"
    dislike = "dislike"
    love = "love"
    fire = "fire"

    @property
    def count_key(self) -> str:
        return self.value + "s"


# ----------------- Stored documents -----------------

class User(BaseModel):
    username: str = Field(..., min_length=4, description="Unique handle")
    email: EmailStr = Field(..., description="Unique login email")
    password_hash: str = Field(..., description="One-way hash of the password")
    is_admin: bool = Field(False, description="Single source of truth for the admin role")
    reset_token_hash: Optional[str] = Field(None, description="Hash of the pending reset code")
    reset_expires_at: Optional[datetime] = Field(None, description="Reset code expiry (UTC)")


class Post(BaseModel):
    title: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    cover: str = Field(..., description="Public URL of the cover image")
    cover_key: Optional[str] = Field(None, description="Asset key used to delete the cover")
    author_id: str = Field(..., description="User ID of author")


class Comment(BaseModel):
    post_id: str = Field(..., description="Post ID being commented on")
    author_id: str = Field(..., description="User ID of commenter")
    content: str = Field(..., min_length=1, max_length=5000)


class Reaction(BaseModel):
    post_id: str = Field(..., description="Post that was reacted to")
    user_id: str = Field(..., description="User who reacted")
    type: ReactionType


class Visitor(BaseModel):
    city: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


# ----------------- Request bodies -----------------

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=4)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    email: str
    reset_code: str = Field(..., alias="resetCode")
    new_password: str = Field(..., alias="newPassword", min_length=1)


class CommentRequest(BaseModel):
    content: str


class ReactionRequest(BaseModel):
    type: ReactionType


class VisitorRequest(BaseModel):
    city: str = ""
    country: str = ""
