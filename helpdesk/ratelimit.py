"""Per-client request rate limiting.

Limits are enforced by `limiter.limit` on a router-level dependency, so the
check runs inside the request itself and does not rely on the middleware
finding the matched route. Every HTTP router is included with
`dependencies=[Depends(rate_limit)]`; all routes share one budget per client
address.
"""

import os

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.util import get_remote_address

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT", "100/minute")

limiter = Limiter(key_func=get_remote_address)


@limiter.limit(DEFAULT_RATE_LIMIT)
async def rate_limit(request: Request, response: Response) -> None:
    """Count the request against the caller's budget; raises `RateLimitExceeded` when spent."""
    return None


__all__ = ["DEFAULT_RATE_LIMIT", "limiter", "rate_limit"]
