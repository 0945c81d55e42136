"""Seed utilities for creating demo data.

Contains `seed_database`, used by `POST /api/seed` and reusable from scripts.
"""
from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Dict, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from helpdesk import models
from helpdesk.audit import log_audit
from helpdesk.auth import get_password_hash

logger = logging.getLogger(__name__)

DEMO_USERS = (
    # username, email, first, last, role, password
    ("admin", "admin@example.com", "System", "Administrator", models.UserRole.ADMIN.value, "Admin123!"),
    ("agent1", "agent1@example.com", "Alex", "Smith", models.UserRole.AGENT.value, "Agent123!"),
    ("agent2", "agent2@example.com", "Sam", "Johnson", models.UserRole.AGENT.value, "Agent123!"),
    ("user1", "user1@example.com", "Jordan", "Lee", models.UserRole.END_USER.value, "User1234!"),
    ("user2", "user2@example.com", "Casey", "Brown", models.UserRole.END_USER.value, "User1234!"),
)

DEMO_CATEGORIES = (
    ("Hardware", "Laptops, monitors and peripherals", "#4F46E5"),
    ("Software", "Installed applications and licences", "#059669"),
    ("Network", "Wi-Fi, VPN and connectivity", "#D97706"),
    ("Accounts", "Passwords, access and permissions", "#DC2626"),
)

DEMO_TAGS = ("vpn", "password-reset", "printer", "email", "onboarding")


def seed_database(db: Session, current_user: Optional[models.UserModel] = None, request: Optional[Request] = None) -> dict:
    """Create demo data for every empty table. Returns the number of rows created per table.

    Safe to call repeatedly: a table that already has rows is left alone.
    """
    created: Dict[str, int] = {"users": 0, "categories": 0, "tags": 0, "tickets": 0, "comments": 0, "articles": 0}

    if db.query(models.UserModel).count() == 0:
        users = [
            models.UserModel(
                username=username,
                email=email,
                first_name=first,
                last_name=last,
                role=role,
                hashed_password=get_password_hash(password),
                is_active=True,
            )
            for username, email, first, last, role, password in DEMO_USERS
        ]
        db.add_all(users)
        created["users"] = len(users)

    if db.query(models.CategoryModel).count() == 0:
        categories = [
            models.CategoryModel(name=name, description=description, color=color, display_order=idx, is_active=True)
            for idx, (name, description, color) in enumerate(DEMO_CATEGORIES)
        ]
        db.add_all(categories)
        created["categories"] = len(categories)

    if db.query(models.TagModel).count() == 0:
        db.add_all([models.TagModel(name=name) for name in DEMO_TAGS])
        created["tags"] = len(DEMO_TAGS)

    # Tickets and articles reference the rows above
    db.flush()

    end_users = db.query(models.UserModel).filter(models.UserModel.role == models.UserRole.END_USER.value).all()
    agents = db.query(models.UserModel).filter(models.UserModel.role == models.UserRole.AGENT.value).all()
    categories = db.query(models.CategoryModel).order_by(models.CategoryModel.display_order).all()
    tags = db.query(models.TagModel).order_by(models.TagModel.name).all()

    if db.query(models.TicketModel).count() == 0 and end_users:
        statuses = [
            models.TicketStatus.OPEN.value,
            models.TicketStatus.IN_PROGRESS.value,
            models.TicketStatus.RESOLVED.value,
            models.TicketStatus.CLOSED.value,
        ]
        priorities = [p.value for p in models.TicketPriority]
        now = models.utcnow()

        tickets = []
        for idx in range(1, 21):
            status = statuses[idx % len(statuses)]
            agent = agents[idx % len(agents)] if agents and status != models.TicketStatus.OPEN.value else None
            created_at = now - timedelta(hours=idx * 5)
            ticket = models.TicketModel(
                id=str(uuid.uuid4()),
                ticket_number=f"TKT-{idx:05d}",
                title=f"Demo issue #{idx}",
                description=f"This is demo ticket #{idx} created by the seed routine.",
                status=status,
                priority=priorities[idx % len(priorities)],
                submitter_id=end_users[idx % len(end_users)].id,
                assigned_to_id=agent.id if agent else None,
                category_id=categories[idx % len(categories)].id if categories else None,
                created_at=created_at,
                updated_at=created_at,
                version=0,
            )
            if status == models.TicketStatus.CLOSED.value:
                ticket.closed_at = created_at + timedelta(hours=2)
                ticket.resolution_notes = "Resolved during the demo walkthrough."
            if tags:
                ticket.tags = [tags[idx % len(tags)]]
            tickets.append(ticket)
        db.add_all(tickets)
        db.flush()
        created["tickets"] = len(tickets)

        if db.query(models.CommentModel).count() == 0:
            comments = [
                models.CommentModel(
                    id=str(uuid.uuid4()),
                    ticket_id=ticket.id,
                    author_id=ticket.submitter_id,
                    content="Any update on this?",
                    is_internal=False,
                    created_at=ticket.created_at + timedelta(minutes=30),
                    updated_at=ticket.created_at + timedelta(minutes=30),
                )
                for ticket in tickets
            ]
            db.add_all(comments)
            created["comments"] = len(comments)

    if db.query(models.KnowledgeArticleModel).count() == 0 and (agents or current_user):
        author = agents[0] if agents else current_user
        now = models.utcnow()
        articles = []
        for idx, category in enumerate(categories):
            article = models.KnowledgeArticleModel(
                id=str(uuid.uuid4()),
                title=f"Troubleshooting {category.name.lower()} problems",
                content=f"Step by step guide for common {category.name.lower()} issues.",
                status=models.ArticleStatus.PUBLISHED.value,
                category_id=category.id,
                author_id=author.id,
                view_count=0,
                helpful_count=idx,
                not_helpful_count=0,
                created_at=now,
                updated_at=now,
                published_at=now,
            )
            if tags:
                article.tags = [tags[idx % len(tags)]]
            articles.append(article)
        db.add_all(articles)
        created["articles"] = len(articles)

    db.commit()
    logger.info("Seed completed: %s", created)

    log_audit(db, request, current_user, "SEED", "System", None, details=created)
    return {"message": "Seed completed", "data": created}
