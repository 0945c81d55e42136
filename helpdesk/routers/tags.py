"""Tag routes: list and create the shared tag vocabulary."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user
from helpdesk.database import get_db
from helpdesk.dependencies import require_agent_or_admin
from helpdesk.errors import api_error
from helpdesk.helpers.tagging import find_tag

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tags", tags=["Tags"])


@router.get("", response_model=List[schemas.TagResponse])
async def list_tags(db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> List[schemas.TagResponse]:
    tags = db.query(models.TagModel).order_by(models.TagModel.name.asc()).all()
    return [schemas.TagResponse.model_validate(t) for t in tags]


@router.post("", response_model=schemas.TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(body: schemas.TagCreate, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)) -> schemas.TagResponse:
    """Create a tag. Names are unique regardless of case."""
    if find_tag(db, body.name) is not None:
        raise api_error(status.HTTP_409_CONFLICT, "tag_exists", f"Tag '{body.name}' already exists")

    tag = models.TagModel(name=body.name, color=body.color)
    db.add(tag)
    db.commit()
    db.refresh(tag)

    log_audit(db, request, current_user, "CREATE", "Tag", tag.id, details={"name": tag.name})
    return schemas.TagResponse.model_validate(tag)
