"""User management routes.

Endpoints implemented:
- POST  /api/users                  (admin only)
- GET   /api/users/agents           (agents and admins; assignable users)
- GET   /api/users/me/preferences   (notification preferences of the caller)
- PUT   /api/users/me/preferences
- GET   /api/users/{id}             (admin/agent or the user themself)
- PATCH /api/users/{id}             (admin or the user themself; role/is_active admin only)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user, get_password_hash
from helpdesk.database import get_db
from helpdesk.dependencies import require_admin, require_agent_or_admin
from helpdesk.errors import api_error
from helpdesk.helpers.pagination import paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


def get_user_or_404(db: Session, user_id: int) -> models.UserModel:
    user = db.get(models.UserModel, user_id)
    if not user:
        raise api_error(status.HTTP_404_NOT_FOUND, "user_not_found", "User not found")
    return user


@router.post("", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(user_in: schemas.UserCreate, request: Request, db: Session = Depends(get_db), _admin: models.UserModel = Depends(require_admin)) -> schemas.UserResponse:
    """Create a user with any role (admin only)."""
    email = user_in.email.lower()
    if db.query(models.UserModel).filter(models.UserModel.email == email).first():
        raise api_error(status.HTTP_409_CONFLICT, "email_in_use", "Email already in use")
    if user_in.username and db.query(models.UserModel).filter(models.UserModel.username == user_in.username).first():
        raise api_error(status.HTTP_409_CONFLICT, "username_in_use", "Username already in use")

    db_user = models.UserModel(
        username=user_in.username,
        email=email,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        hashed_password=get_password_hash(user_in.password),
        role=user_in.role,
        is_active=True,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    log_audit(db, request, _admin, "CREATE", "User", db_user.id, details={"role": db_user.role})
    return schemas.UserResponse.model_validate(db_user)


@router.get("/agents")
async def list_agents(page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=100), current_user: models.UserModel = Depends(require_agent_or_admin), db: Session = Depends(get_db)):
    """List active users a ticket can be assigned to."""
    q = db.query(models.UserModel).filter(
        models.UserModel.role.in_([models.UserRole.AGENT.value, models.UserRole.ADMIN.value]),
        models.UserModel.is_active.is_(True),
    )
    total = q.count()
    users = q.order_by(models.UserModel.last_name.asc(), models.UserModel.first_name.asc()).offset((page - 1) * limit).limit(limit).all()
    return paginated([schemas.UserResponse.model_validate(u) for u in users], page, limit, total)


def _preferences_response(prefs: Optional[models.NotificationPreferencesModel]) -> schemas.NotificationPreferencesResponse:
    if prefs is None:
        defaults = schemas.NotificationPreferences()
        return schemas.NotificationPreferencesResponse(**defaults.model_dump(exclude={"webhook_secret"}), has_webhook_secret=False)
    return schemas.NotificationPreferencesResponse(
        in_app_enabled=prefs.in_app_enabled,
        in_app_on_ticket_created=prefs.in_app_on_ticket_created,
        in_app_on_ticket_updated=prefs.in_app_on_ticket_updated,
        in_app_on_ticket_assigned=prefs.in_app_on_ticket_assigned,
        in_app_on_comment_added=prefs.in_app_on_comment_added,
        webhook_enabled=prefs.webhook_enabled,
        webhook_url=prefs.webhook_url,
        has_webhook_secret=bool(prefs.webhook_secret),
    )


@router.get("/me/preferences", response_model=schemas.NotificationPreferencesResponse)
async def get_preferences(db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)):
    prefs = db.query(models.NotificationPreferencesModel).filter(models.NotificationPreferencesModel.user_id == current_user.id).first()
    return _preferences_response(prefs)


@router.put("/me/preferences", response_model=schemas.NotificationPreferencesResponse)
async def update_preferences(body: schemas.NotificationPreferences, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)):
    """Create or replace the caller's notification preferences."""
    prefs = db.query(models.NotificationPreferencesModel).filter(models.NotificationPreferencesModel.user_id == current_user.id).first()
    if prefs is None:
        prefs = models.NotificationPreferencesModel(user_id=current_user.id)
        db.add(prefs)

    for field, value in body.model_dump().items():
        setattr(prefs, field, value)
    prefs.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(prefs)

    log_audit(db, request, current_user, "UPDATE", "NotificationPreferences", current_user.id)
    return _preferences_response(prefs)


@router.get("/{user_id}", response_model=schemas.UserResponse)
async def get_user(user_id: int, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> schemas.UserResponse:
    if not current_user.is_staff and current_user.id != user_id:
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Not allowed to view this user")
    return schemas.UserResponse.model_validate(get_user_or_404(db, user_id))


@router.patch("/{user_id}", response_model=schemas.UserResponse)
async def update_user(user_id: int, body: schemas.UserUpdate, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> schemas.UserResponse:
    """Update a profile. Only admins may change role or active flag."""
    is_admin = current_user.role == models.UserRole.ADMIN.value
    if not is_admin and current_user.id != user_id:
        raise api_error(status.HTTP_403_FORBIDDEN, "forbidden", "Not allowed to update this user")

    changes = body.model_dump(exclude_unset=True)
    if not is_admin and ("role" in changes or "is_active" in changes):
        raise api_error(status.HTTP_403_FORBIDDEN, "admin_required", "Only admins can change role or active status")

    user = get_user_or_404(db, user_id)
    for field, value in changes.items():
        if value is not None:
            setattr(user, field, value)
    db.commit()
    db.refresh(user)

    log_audit(db, request, current_user, "UPDATE", "User", user.id, details=changes)
    return schemas.UserResponse.model_validate(user)
