"""Knowledge base routes.

Implements:
- GET  /api/knowledge/search      -> search articles (published only for end users)
- GET  /api/knowledge/suggested   -> articles relevant to a ticket or free text
- GET  /api/knowledge/{id}        -> single article; counts a view
- POST /api/knowledge             -> create (agent/admin)
- PUT  /api/knowledge/{id}        -> update (agent/admin)
- POST /api/knowledge/{id}/rate   -> helpful / not helpful vote
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from helpdesk import models, schemas
from helpdesk.audit import log_audit
from helpdesk.auth import get_current_user
from helpdesk.cache import ARTICLE_TTL_SECONDS, article_key, cache
from helpdesk.database import get_db
from helpdesk.dependencies import require_agent_or_admin, require_ticket_access
from helpdesk.errors import api_error
from helpdesk.helpers.pagination import paginated
from helpdesk.helpers.tagging import resolve_tags

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge", tags=["Knowledge"])

PUBLISHED = models.ArticleStatus.PUBLISHED.value
MIN_SEARCH_TERM_LENGTH = 3


def get_article_or_404(db: Session, article_id: str) -> models.KnowledgeArticleModel:
    article = db.get(models.KnowledgeArticleModel, article_id)
    if not article:
        raise api_error(status.HTTP_404_NOT_FOUND, "article_not_found", "Article not found")
    return article


def _check_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is not None and db.get(models.CategoryModel, category_id) is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "category_not_found", "Category not found")


def _search_terms(text: str) -> List[str]:
    return [w for w in re.findall(r"[\w-]+", text.lower()) if len(w) >= MIN_SEARCH_TERM_LENGTH]


def _text_filter(terms: List[str]):
    clauses = []
    for term in terms:
        pattern = f"%{term}%"
        clauses.append(models.KnowledgeArticleModel.title.ilike(pattern))
        clauses.append(models.KnowledgeArticleModel.content.ilike(pattern))
    return or_(*clauses)


def _most_helpful(q):
    return q.order_by(
        models.KnowledgeArticleModel.helpful_count.desc(),
        models.KnowledgeArticleModel.view_count.desc(),
        models.KnowledgeArticleModel.published_at.desc(),
    )


@router.get("/search")
async def search_articles(
    q: Optional[str] = Query(None, max_length=200),
    category_id: Optional[int] = Query(None),
    tag: Optional[List[str]] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: models.UserModel = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Search by text, category and tags. Only agents and admins may look past published articles."""
    query = db.query(models.KnowledgeArticleModel)

    wanted_status = PUBLISHED
    if status_filter and current_user.is_staff:
        wanted_status = schemas.normalize_choice(status_filter)
        if wanted_status not in schemas.ARTICLE_STATUS_VALUES:
            raise api_error(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error", f"status must be one of {sorted(schemas.ARTICLE_STATUS_VALUES)}")
    query = query.filter(models.KnowledgeArticleModel.status == wanted_status)

    if category_id is not None:
        query = query.filter(models.KnowledgeArticleModel.category_id == category_id)
    if tag:
        lowered = [t.lower() for t in tag]
        query = query.filter(models.KnowledgeArticleModel.tags.any(func.lower(models.TagModel.name).in_(lowered)))

    terms = _search_terms(q or "")
    if terms:
        query = query.filter(_text_filter(terms))

    total = query.count()
    articles = (
        query.order_by(func.coalesce(models.KnowledgeArticleModel.published_at, models.KnowledgeArticleModel.created_at).desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return paginated([schemas.ArticleListItem.model_validate(a) for a in articles], page, limit, total)


@router.get("/suggested", response_model=List[schemas.ArticleListItem])
async def suggested_articles(
    ticket_id: Optional[str] = Query(None),
    q: Optional[str] = Query(None, max_length=500),
    category_id: Optional[int] = Query(None),
    tags: Optional[List[str]] = Query(None),
    limit: int = Query(5, ge=1, le=20),
    current_user: models.UserModel = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[schemas.ArticleListItem]:
    """Published articles for a ticket: same category first, then shared tags,
    then text matches on the ticket's title and description, then the most
    helpful articles overall.
    """
    text = q or ""
    tag_names = [t.lower() for t in (tags or [])]
    if ticket_id:
        ticket = db.get(models.TicketModel, ticket_id)
        if ticket is None:
            raise api_error(status.HTTP_404_NOT_FOUND, "ticket_not_found", "Ticket not found")
        require_ticket_access(ticket, current_user)
        text = f"{ticket.title} {ticket.description} {text}"
        if category_id is None:
            category_id = ticket.category_id
        tag_names.extend(t.name.lower() for t in ticket.tags)

    published = db.query(models.KnowledgeArticleModel).filter(models.KnowledgeArticleModel.status == PUBLISHED)
    chosen: Dict[str, models.KnowledgeArticleModel] = {}

    def take(candidates) -> None:
        for article in candidates:
            if len(chosen) >= limit:
                return
            chosen.setdefault(article.id, article)

    if category_id is not None:
        take(_most_helpful(published.filter(models.KnowledgeArticleModel.category_id == category_id)).limit(limit).all())

    if tag_names and len(chosen) < limit:
        wanted = set(tag_names)
        candidates = published.filter(models.KnowledgeArticleModel.tags.any(func.lower(models.TagModel.name).in_(sorted(wanted)))).all()
        # More shared tags first
        candidates.sort(key=lambda a: (-len(wanted & {t.name.lower() for t in a.tags}), -a.helpful_count, -a.view_count))
        take(candidates)

    terms = _search_terms(text)
    if terms and len(chosen) < limit:
        take(_most_helpful(published.filter(_text_filter(terms))).limit(limit * 2).all())

    if len(chosen) < limit:
        take(_most_helpful(published).limit(limit * 2).all())

    return [schemas.ArticleListItem.model_validate(a) for a in chosen.values()]


@router.get("/{article_id}", response_model=schemas.ArticleResponse)
async def get_article(article_id: str, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> Dict[str, Any]:
    """Return an article and count the view. Drafts and archived articles are hidden from end users."""
    key = article_key(article_id)
    data = cache.get(key)
    if data is None:
        data = schemas.ArticleResponse.model_validate(get_article_or_404(db, article_id)).model_dump(mode="json")

    if data["status"] != PUBLISHED and not current_user.is_staff:
        raise api_error(status.HTTP_404_NOT_FOUND, "article_not_found", "Article not found")

    article_q = db.query(models.KnowledgeArticleModel).filter(models.KnowledgeArticleModel.id == article_id)
    updated = article_q.update({models.KnowledgeArticleModel.view_count: models.KnowledgeArticleModel.view_count + 1}, synchronize_session=False)
    if not updated:
        db.rollback()
        # Deleted since it was cached
        cache.delete(key)
        raise api_error(status.HTTP_404_NOT_FOUND, "article_not_found", "Article not found")
    # Read back inside the same transaction; other workers may have counted views too
    view_count = article_q.with_entities(models.KnowledgeArticleModel.view_count).scalar()
    db.commit()

    data = {**data, "view_count": view_count}
    cache.set(key, data, ARTICLE_TTL_SECONDS)
    return data


@router.post("", response_model=schemas.ArticleResponse, status_code=status.HTTP_201_CREATED)
async def create_article(body: schemas.ArticleCreate, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)) -> schemas.ArticleResponse:
    _check_category(db, body.category_id)

    now = datetime.now(timezone.utc)
    article = models.KnowledgeArticleModel(
        id=str(uuid.uuid4()),
        title=body.title.strip(),
        content=body.content,
        status=body.status,
        category_id=body.category_id,
        author_id=current_user.id,
        view_count=0,
        helpful_count=0,
        not_helpful_count=0,
        created_at=now,
        updated_at=now,
        published_at=now if body.status == PUBLISHED else None,
    )
    article.tags = resolve_tags(db, body.tags)
    db.add(article)
    db.commit()
    db.refresh(article)

    log_audit(db, request, current_user, "CREATE", "KnowledgeArticle", article.id, details={"status": article.status})
    return schemas.ArticleResponse.model_validate(article)


@router.put("/{article_id}", response_model=schemas.ArticleResponse)
async def update_article(article_id: str, body: schemas.ArticleUpdate, request: Request, db: Session = Depends(get_db), current_user: models.UserModel = Depends(require_agent_or_admin)) -> schemas.ArticleResponse:
    """Partial update; publishing a draft stamps published_at."""
    article = get_article_or_404(db, article_id)
    changes = body.model_dump(exclude_unset=True)

    if "category_id" in changes:
        _check_category(db, body.category_id)
        article.category_id = body.category_id
    if body.title is not None:
        article.title = body.title.strip()
    if body.content is not None:
        article.content = body.content
    if body.status is not None and body.status != article.status:
        if body.status == PUBLISHED:
            article.published_at = datetime.now(timezone.utc)
        article.status = body.status
    if body.tags is not None:
        article.tags = resolve_tags(db, body.tags)

    article.last_updated_by_id = current_user.id
    article.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(article)

    cache.delete(article_key(article.id))
    log_audit(db, request, current_user, "UPDATE", "KnowledgeArticle", article.id, details=sorted(changes))
    return schemas.ArticleResponse.model_validate(article)


@router.post("/{article_id}/rate", status_code=status.HTTP_204_NO_CONTENT)
async def rate_article(article_id: str, body: schemas.RateArticleRequest, db: Session = Depends(get_db), current_user: models.UserModel = Depends(get_current_user)) -> None:
    article = get_article_or_404(db, article_id)
    if article.status != PUBLISHED and not current_user.is_staff:
        raise api_error(status.HTTP_404_NOT_FOUND, "article_not_found", "Article not found")

    column = models.KnowledgeArticleModel.helpful_count if body.helpful else models.KnowledgeArticleModel.not_helpful_count
    db.query(models.KnowledgeArticleModel).filter(models.KnowledgeArticleModel.id == article.id).update({column: column + 1}, synchronize_session=False)
    db.commit()

    cache.delete(article_key(article.id))
    return None
