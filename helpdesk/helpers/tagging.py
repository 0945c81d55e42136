"""Tag lookup shared by tickets and knowledge articles."""
from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from helpdesk import models


def find_tag(db: Session, name: str) -> Optional[models.TagModel]:
    return db.query(models.TagModel).filter(func.lower(models.TagModel.name) == name.lower()).first()


def resolve_tags(db: Session, names: Iterable[str], create_missing: bool = True) -> List[models.TagModel]:
    """Map names to tags, matching existing ones case-insensitively.

    Unknown names become new tags when `create_missing` is set, otherwise they
    are skipped. Duplicates in `names` collapse to one tag.
    """
    tags: List[models.TagModel] = []
    seen = set()
    for name in names:
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        tag = find_tag(db, name)
        if tag is None and create_missing:
            tag = models.TagModel(name=name)
            db.add(tag)
            db.flush()
        if tag is not None:
            tags.append(tag)
    return tags
