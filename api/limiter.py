"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, stored on app.state.limiter)
and by api/routes/auth.py (per-route @limiter.limit() on /login and
/register).

One shared instance means one in-memory counter store. Separate instances
per module would each count on their own and the limits would never trigger.
Tests switch it off with limiter.enabled = False.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """LOGIN_RATE_LIMIT, read per request so tests and deployments can override it."""
    return get_settings().login_rate_limit
