"""Rate limiting utilities using throttled-py"""
import os
import logging
from datetime import timedelta
from throttled import Throttled, RateLimiterType, store, rate_limiter

from core import config

logger = logging.getLogger("securevault")

# Initialize storage - Redis for production, MemoryStore for development
_storage_type = "memory"
try:
    redis_url = os.getenv("REDIS_URL", "").strip()
    if redis_url:
        # RedisStore expects the URL string, not a Redis client object
        storage = store.RedisStore(server=redis_url)
        _storage_type = "redis"
        logger.info("[rate_limit] Using Redis for rate limiting")
    else:
        storage = store.MemoryStore()
        logger.warning("[rate_limit] REDIS_URL not set - using in-memory storage (not suitable for production with multiple workers)")
except Exception as ex:
    # Fallback to memory storage if Redis is not available
    storage = store.MemoryStore()
    logger.warning(f"[rate_limit] Redis connection failed, using in-memory storage: {ex}")

# Sign-in limiter: 10 attempts per IP per 15 minutes (brute force protection)
login_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(minutes=15), limit=10),
    store=storage,
)

# Password reset limiter: 5 requests per email per hour (prevent enumeration/abuse)
password_reset_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(hours=1), limit=5),
    store=storage,
)

# OTP send limiter: 5 codes (email or SMS) per user per 10 minutes
otp_send_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(minutes=10), limit=5),
    store=storage,
)


def is_rate_limited(throttle: Throttled, key: str) -> bool:
    """
    Consume one unit of quota for key.

    Returns True when the caller is over the limit. Fails open if the
    limiter itself errors, and is a no-op when RATE_LIMIT_ENABLED is off.
    """
    if not config.RATE_LIMIT_ENABLED:
        return False
    try:
        result = throttle.limit(key, cost=1)
        return bool(result.limited)
    except Exception as ex:
        logger.warning(f"[rate_limit] check failed for {key}: {ex}")
        return False
