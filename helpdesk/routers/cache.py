"""Admin controls for the in-process read cache: statistics and invalidation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.audit import log_audit
from helpdesk.cache import ARTICLES_PATTERN, TICKETS_PATTERN, article_key, cache, ticket_key
from helpdesk.database import get_db
from helpdesk.dependencies import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["Cache"])


@router.get("/statistics", response_model=schemas.CacheStatisticsResponse)
async def cache_statistics(_admin: models.UserModel = Depends(require_admin)) -> schemas.CacheStatisticsResponse:
    """Hit/miss counters since the last full clear, and the number of live keys."""
    return schemas.CacheStatisticsResponse(**cache.statistics())


@router.delete("/tickets", status_code=status.HTTP_204_NO_CONTENT)
async def clear_ticket_cache(request: Request, db: Session = Depends(get_db), _admin: models.UserModel = Depends(require_admin)) -> None:
    removed = cache.delete_pattern(TICKETS_PATTERN)
    logger.info("All ticket caches cleared by admin=%s (%d keys)", _admin.id, removed)
    log_audit(db, request, _admin, "CACHE_CLEAR", "Cache", "tickets", details={"removed": removed})


@router.delete("/articles", status_code=status.HTTP_204_NO_CONTENT)
async def clear_article_cache(request: Request, db: Session = Depends(get_db), _admin: models.UserModel = Depends(require_admin)) -> None:
    removed = cache.delete_pattern(ARTICLES_PATTERN)
    logger.info("All article caches cleared by admin=%s (%d keys)", _admin.id, removed)
    log_audit(db, request, _admin, "CACHE_CLEAR", "Cache", "articles", details={"removed": removed})


@router.delete("/all", status_code=status.HTTP_204_NO_CONTENT)
async def clear_all_caches(request: Request, db: Session = Depends(get_db), _admin: models.UserModel = Depends(require_admin)) -> None:
    """Drop every entry. Also resets the statistics."""
    cache.clear()
    logger.warning("ALL caches cleared by admin=%s", _admin.id)
    log_audit(db, request, _admin, "CACHE_CLEAR", "Cache", "all")


@router.delete("/tickets/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_one_ticket(ticket_id: str, _admin: models.UserModel = Depends(require_admin)) -> None:
    cache.delete(ticket_key(ticket_id))
    logger.info("Ticket cache cleared by admin=%s: %s", _admin.id, ticket_id)


@router.delete("/articles/{article_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_one_article(article_id: str, _admin: models.UserModel = Depends(require_admin)) -> None:
    cache.delete(article_key(article_id))
    logger.info("Article cache cleared by admin=%s: %s", _admin.id, article_id)
