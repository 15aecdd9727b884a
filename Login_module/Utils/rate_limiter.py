"""
Fixed-window rate limiting on top of the key/value store, plus client IP extraction.
"""
import logging
from dataclasses import dataclass

from Login_module.Utils.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

UNKNOWN_IP = "Unknown"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int

    def headers(self) -> dict:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }


def _rate_limit_key(scope: str, identifier: str) -> str:
    """Generate store key for a rate limit bucket"""
    return f"rate_limit:{scope}:{identifier}"


def check_rate_limit(
    store: KeyValueStore,
    scope: str,
    identifier: str,
    max_requests: int,
    window_seconds: int,
    fail_open: bool = False,
) -> RateLimitResult:
    """
    Count one request for `identifier` in the current window of `scope`.
    The first request of a window creates the counter with an expiry, so the
    window resets itself without any cleanup task.
    """
    key = _rate_limit_key(scope, identifier)
    try:
        count = store.incr(key)
        if count == 1:
            store.expire(key, window_seconds)
            reset = window_seconds
        else:
            reset = store.ttl(key)
            if reset < 0:
                # Counter lost its expiry (e.g. crash between incr and expire)
                store.expire(key, window_seconds)
                reset = window_seconds
    except Exception as e:
        logger.error(f"Store error checking rate limit for {scope}: {e}")
        # API endpoints fail closed, tracking endpoints fail open
        return RateLimitResult(fail_open, max_requests, 0, window_seconds)

    remaining = max(0, max_requests - count)
    return RateLimitResult(count <= max_requests, max_requests, remaining, reset)


def get_client_ip(request) -> str:
    """Extract client IP address from request"""
    # CDN headers first (Cloudflare, Akamai / Cloudflare Enterprise)
    for header in ("CF-Connecting-IP", "True-Client-IP"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    # Check for forwarded IP (behind proxy/load balancer)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fallback to direct client IP
    if request.client and request.client.host:
        host = request.client.host
        # Remove IPv4-mapped IPv6 prefix if present
        if host.startswith("::ffff:"):
            return host[7:]
        return host

    return UNKNOWN_IP
