"""
Shared slowapi limiter.

The same instance is attached to app.state and used by route decorators.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit.enabled,
)
