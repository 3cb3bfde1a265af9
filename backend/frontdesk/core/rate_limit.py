"""Shared rate limiter instance for use across route files."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from frontdesk.core.config import settings

# Only the public booking page is limited; staff commands are human-paced.
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
