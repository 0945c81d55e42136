"""Pydantic schemas for the helpdesk API.

Request models validate field limits; response models are built from ORM
instances (`from_attributes`).
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from helpdesk.models import ArticleStatus, TicketPriority, TicketStatus, UserRole

PRIORITY_VALUES = {p.value for p in TicketPriority}
STATUS_VALUES = {s.value for s in TicketStatus}
ARTICLE_STATUS_VALUES = {s.value for s in ArticleStatus}
ROLE_VALUES = {r.value for r in UserRole}

TAG_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-]+$")
HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
MAX_ARTICLE_TAGS = 10


def normalize_choice(value: Any) -> Any:
    """Accept `InProgress`, `in-progress` or `IN_PROGRESS` for `in_progress`."""
    if not isinstance(value, str):
        return value
    value = value.strip().replace("-", "_")
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", value).lower()


def _check_choice(value: str, allowed: set, field_name: str) -> str:
    if value not in allowed:
        raise ValueError(f"{field_name} must be one of {sorted(allowed)}")
    return value


def validate_tag_name(value: str) -> str:
    value = value.strip()
    if len(value) < 2 or len(value) > 50:
        raise ValueError("tag name must be between 2 and 50 characters")
    if not TAG_NAME_PATTERN.match(value):
        raise ValueError("tag name may only contain letters, numbers and hyphens")
    return value


def validate_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if not re.search(r"[A-Z]", value):
        raise ValueError("password must contain an uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("password must contain a lowercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("password must contain a digit")
    if not re.search(r"[^A-Za-z0-9]", value):
        raise ValueError("password must contain a special character")
    return value


def _tag_names(value: Any) -> Any:
    if value is None:
        return []
    return [getattr(t, "name", t) for t in value]


# ----------------------------- Users ---------------------------------
class UserCreate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    password: str
    role: str = Field(default=UserRole.END_USER.value)

    @field_validator("password")
    def check_password(cls, v):
        return validate_password_strength(v)

    @field_validator("role", mode="before")
    def check_role(cls, v):
        return _check_choice(normalize_choice(v), ROLE_VALUES, "role")


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    role: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("role", mode="before")
    def check_role(cls, v):
        if v is None:
            return v
        return _check_choice(normalize_choice(v), ROLE_VALUES, "role")


class UserResponse(BaseModel):
    id: int
    username: Optional[str] = None
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    two_factor_enabled: bool = False
    created_at: datetime
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ----------------------------- Auth ----------------------------------
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    username: Optional[str] = Field(None, min_length=3, max_length=50)

    @field_validator("password")
    def check_password(cls, v):
        return validate_password_strength(v)


class LoginRequest(BaseModel):
    username_or_email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# -------------------------- Two-factor auth --------------------------
class TwoFactorChallengeResponse(BaseModel):
    """Returned by login instead of tokens when the account has two-factor auth on."""
    requires_2fa: bool = True
    challenge_token: str
    user_id: int
    email: str


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    enabled_at: Optional[datetime] = None
    backup_codes_remaining: int = 0


class TwoFactorSetupResponse(BaseModel):
    secret: str
    qr_code_uri: str


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=9)


class TwoFactorEnableResponse(BaseModel):
    enabled: bool = True
    backup_codes: List[str]


class TwoFactorDisableRequest(BaseModel):
    password: str = Field(..., min_length=1)


class TwoFactorVerifyRequest(BaseModel):
    challenge_token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=6, max_length=9)
    is_backup_code: Optional[bool] = None


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]


# ----------------------- Notification preferences ---------------------
class NotificationPreferences(BaseModel):
    in_app_enabled: bool = True
    in_app_on_ticket_created: bool = True
    in_app_on_ticket_updated: bool = True
    in_app_on_ticket_assigned: bool = True
    in_app_on_comment_added: bool = True
    webhook_enabled: bool = False
    webhook_url: Optional[str] = Field(None, max_length=1000)
    webhook_secret: Optional[str] = Field(None, max_length=255)

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_webhook(self):
        if self.webhook_enabled and not self.webhook_url:
            raise ValueError("webhook_url is required when webhooks are enabled")
        if self.webhook_url and not self.webhook_url.startswith(("http://", "https://")):
            raise ValueError("webhook_url must be an http(s) URL")
        return self


class NotificationPreferencesResponse(BaseModel):
    in_app_enabled: bool
    in_app_on_ticket_created: bool
    in_app_on_ticket_updated: bool
    in_app_on_ticket_assigned: bool
    in_app_on_comment_added: bool
    webhook_enabled: bool
    webhook_url: Optional[str] = None
    # The secret is write-only
    has_webhook_secret: bool = False


# ----------------------------- Tickets -------------------------------
class TicketCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=10000)
    priority: str = Field(default=TicketPriority.MEDIUM.value)
    category_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("title", "description", mode="before")
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("priority", mode="before")
    def validate_priority(cls, v):
        return _check_choice(normalize_choice(v), PRIORITY_VALUES, "priority")

    @field_validator("tags")
    def validate_tags(cls, v):
        return [validate_tag_name(t) for t in v]


class TicketResponse(BaseModel):
    id: str
    ticket_number: str
    title: str
    description: str
    status: str
    priority: str
    submitter_id: int
    assigned_to_id: Optional[int] = None
    category_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    version: int
    tags: List[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @field_validator("tags", mode="before")
    def tag_names(cls, v):
        return _tag_names(v)


class AssignTicketRequest(BaseModel):
    agent_id: int
    expected_version: Optional[int] = Field(None, ge=0)


class UpdateStatusRequest(BaseModel):
    status: str
    expected_version: Optional[int] = Field(None, ge=0)

    @field_validator("status", mode="before")
    def validate_status(cls, v):
        return _check_choice(normalize_choice(v), STATUS_VALUES, "status")


class UpdatePriorityRequest(BaseModel):
    priority: str
    expected_version: Optional[int] = Field(None, ge=0)

    @field_validator("priority", mode="before")
    def validate_priority(cls, v):
        return _check_choice(normalize_choice(v), PRIORITY_VALUES, "priority")


class CloseTicketRequest(BaseModel):
    # Length rules live in the lifecycle guard so every caller gets them
    resolution_notes: Optional[str] = None
    expected_version: Optional[int] = Field(None, ge=0)


class TicketTagsRequest(BaseModel):
    tags: List[str] = Field(..., min_length=1, max_length=20)
    expected_version: Optional[int] = Field(None, ge=0)

    @field_validator("tags")
    def validate_tags(cls, v):
        return [validate_tag_name(t) for t in v]


# ----------------------------- Comments ------------------------------
class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = False

    @field_validator("content")
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("content must not be blank")
        return v


class CommentResponse(BaseModel):
    id: str
    ticket_id: str
    author_id: int
    content: str
    is_internal: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ----------------------------- Attachments ---------------------------
class AttachmentResponse(BaseModel):
    id: str
    ticket_id: str
    file_name: str
    content_type: str
    file_size_bytes: int
    uploaded_by_id: int
    uploaded_at: datetime

    model_config = {"from_attributes": True}


class TicketDetailResponse(TicketResponse):
    comments: List[CommentResponse] = Field(default_factory=list)
    attachments: List[AttachmentResponse] = Field(default_factory=list)


# ----------------------------- Tags ----------------------------------
class TagCreate(BaseModel):
    name: str
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)

    @field_validator("name")
    def validate_name(cls, v):
        return validate_tag_name(v)


class TagResponse(BaseModel):
    id: int
    name: str
    color: Optional[str] = None

    model_config = {"from_attributes": True}


# --------------------------- Categories ----------------------------
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    display_order: int = Field(default=0, ge=0)
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)


class CategoryResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    display_order: int
    color: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# --------------------------- Knowledge base --------------------------
class ArticleCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=200)
    content: str = Field(..., min_length=1, max_length=50000)
    category_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list, max_length=MAX_ARTICLE_TAGS)
    status: str = Field(default=ArticleStatus.DRAFT.value)

    @field_validator("status", mode="before")
    def validate_status(cls, v):
        return _check_choice(normalize_choice(v), ARTICLE_STATUS_VALUES, "status")

    @field_validator("tags")
    def validate_tags(cls, v):
        return [validate_tag_name(t) for t in v]


class ArticleUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=2, max_length=200)
    content: Optional[str] = Field(None, min_length=1, max_length=50000)
    category_id: Optional[int] = None
    tags: Optional[List[str]] = Field(None, max_length=MAX_ARTICLE_TAGS)
    status: Optional[str] = None

    @field_validator("status", mode="before")
    def validate_status(cls, v):
        if v is None:
            return v
        return _check_choice(normalize_choice(v), ARTICLE_STATUS_VALUES, "status")

    @field_validator("tags")
    def validate_tags(cls, v):
        if v is None:
            return v
        return [validate_tag_name(t) for t in v]


class ArticleListItem(BaseModel):
    id: str
    title: str
    status: str
    category_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    view_count: int
    helpful_count: int
    not_helpful_count: int
    author_id: int
    created_at: datetime
    published_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("tags", mode="before")
    def tag_names(cls, v):
        return _tag_names(v)


class ArticleResponse(ArticleListItem):
    content: str
    last_updated_by_id: Optional[int] = None
    updated_at: datetime


class RateArticleRequest(BaseModel):
    helpful: bool


# ----------------------------- Audit ---------------------------------
class AuditLogResponse(BaseModel):
    id: int
    timestamp: datetime
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: Optional[str] = None
    status: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = {"from_attributes": True}


# ----------------------------- Cache ---------------------------------
class CacheStatisticsResponse(BaseModel):
    total_hits: int
    total_misses: int
    hit_rate: float
    total_keys: int



__all__ = [
    "PRIORITY_VALUES",
    "STATUS_VALUES",
    "ARTICLE_STATUS_VALUES",
    "ROLE_VALUES",
    "normalize_choice",
    "validate_tag_name",
    "validate_password_strength",
    "UserCreate",
    "UserUpdate",
    "UserResponse",
    "RegisterRequest",
    "LoginRequest",
    "RefreshRequest",
    "TokenResponse",
    "TwoFactorChallengeResponse",
    "TwoFactorStatusResponse",
    "TwoFactorSetupResponse",
    "TwoFactorCodeRequest",
    "TwoFactorEnableResponse",
    "TwoFactorDisableRequest",
    "TwoFactorVerifyRequest",
    "BackupCodesResponse",
    "NotificationPreferences",
    "NotificationPreferencesResponse",
    "TicketCreate",
    "TicketResponse",
    "TicketDetailResponse",
    "AssignTicketRequest",
    "UpdateStatusRequest",
    "UpdatePriorityRequest",
    "CloseTicketRequest",
    "TicketTagsRequest",
    "CommentCreate",
    "CommentResponse",
    "AttachmentResponse",
    "TagCreate",
    "TagResponse",
    "CategoryCreate",
    "CategoryResponse",
    "ArticleCreate",
    "ArticleUpdate",
    "ArticleListItem",
    "ArticleResponse",
    "RateArticleRequest",
    "AuditLogResponse",
    "CacheStatisticsResponse",
]
