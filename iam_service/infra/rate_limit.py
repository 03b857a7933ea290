from __future__ import annotations

import logging
import os

from iam_service.infra.cache import CACHE_KEY_PREFIX, CacheBackend, CacheError

RATE_LIMIT_MAX_ATTEMPTS = int(os.getenv("RATE_LIMIT_MAX_ATTEMPTS", "120"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """Counts attempts per key inside a fixed window.

    Cache failures let the request through: availability wins over limiting.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        limit: int = RATE_LIMIT_MAX_ATTEMPTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
    ) -> None:
        self.backend = backend
        self.limit = limit
        self.window_seconds = window_seconds

    @staticmethod
    def make_key(tenant_id: str | None, action: str, client_ip: str | None) -> str:
        return f"{CACHE_KEY_PREFIX}_rl:{tenant_id or 'unknown'}:{action}:{client_ip or 'unknown'}"

    def hit(self, key: str) -> bool:
        """Register one attempt and return True when the key is over its limit."""
        try:
            count = self.backend.incr(key, self.window_seconds)
        except CacheError:
            logger.warning("rate limit cache unavailable, allowing request for %s", key)
            return False
        return count > self.limit
