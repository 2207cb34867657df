"""
Idempotency cache: client key → previously produced result.

Write-once within the TTL; a hit short-circuits the operation without
any writes.

Key format: idem:{scope}:{client_key}
    scope = slots:create | slots:bulk | bookings
"""

import logging
from typing import Any, Optional

from .cache import CacheBackend

logger = logging.getLogger(__name__)

DEFAULT_TTL = 600  # 10 minutes


class IdempotencyCache:
    KEY_PREFIX = "idem"

    def __init__(self, cache: CacheBackend, ttl: int = DEFAULT_TTL):
        self.cache = cache
        self.ttl = ttl

    def _key(self, scope: str, client_key: str) -> str:
        return f"{self.KEY_PREFIX}:{scope}:{client_key}"

    def lookup(self, scope: str, client_key: Optional[str]) -> Optional[Any]:
        if not client_key:
            return None
        result = self.cache.get(self._key(scope, client_key))
        if result is not None:
            logger.info(f"Idempotent replay: {scope} key={client_key}")
        return result

    def remember(self, scope: str, client_key: Optional[str], result: Any) -> None:
        if not client_key:
            return
        self.cache.set(self._key(scope, client_key), result, self.ttl)
