"""Rate limiting configuration."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from sessionvault.config import get_settings

settings = get_settings()

LOGIN_LIMIT = "10/minute"
REFRESH_LIMIT = "30/minute"

# Create limiter instance
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute"],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)
