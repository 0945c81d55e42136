"""List-endpoint envelope: `{"data": [...], "pagination": {...}}`."""
from __future__ import annotations

from typing import Any, Sequence


def paginated(data: Sequence[Any], page: int, limit: int, total: int) -> dict:
    return {
        "data": list(data),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }
