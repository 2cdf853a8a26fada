from fastapi_limiter.depends import RateLimiter

from .auth import get_key_by_user_id_or_ip
from .config import settings


async def _no_limit():
    return None


def rate_limit(times: int, minutes: int = 1):
    """Per-user (or per-IP) limiter backed by Redis; a no-op when disabled."""
    if not settings.RATE_LIMIT_ENABLED:
        return _no_limit
    return RateLimiter(times=times, minutes=minutes, identifier=get_key_by_user_id_or_ip)
