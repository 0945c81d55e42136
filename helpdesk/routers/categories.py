"""Ticket and article categories."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user
from helpdesk.database import get_db
from helpdesk.dependencies import require_admin
from helpdesk.errors import api_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["Categories"])


@router.get("", response_model=List[schemas.CategoryResponse])
async def list_categories(db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> List[schemas.CategoryResponse]:
    """Active categories in display order."""
    rows = (
        db.query(models.CategoryModel)
        .filter(models.CategoryModel.is_active.is_(True))
        .order_by(models.CategoryModel.display_order.asc(), models.CategoryModel.name.asc())
        .all()
    )
    return [schemas.CategoryResponse.model_validate(c) for c in rows]


@router.post("", response_model=schemas.CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(body: schemas.CategoryCreate, request: Request, db: Session = Depends(get_db), _admin: models.UserModel = Depends(require_admin)) -> schemas.CategoryResponse:
    name = body.name.strip()
    exists = db.query(models.CategoryModel).filter(func.lower(models.CategoryModel.name) == name.lower()).first()
    if exists:
        raise api_error(status.HTTP_409_CONFLICT, "category_exists", f"Category '{name}' already exists")

    category = models.CategoryModel(
        name=name,
        description=body.description,
        display_order=body.display_order,
        color=body.color,
        is_active=True,
    )
    db.add(category)
    db.commit()
    db.refresh(category)

    log_audit(db, request, _admin, "CREATE", "Category", category.id, details={"name": category.name})
    return schemas.CategoryResponse.model_validate(category)
