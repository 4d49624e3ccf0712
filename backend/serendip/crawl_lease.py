"""Best-effort cross-instance crawl lease on Redis (SET NX EX)."""
from __future__ import annotations

import logging
import uuid

from serendip.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def _get_redis():
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    try:
        import redis  # type: ignore

        _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    except Exception:
        _redis_client = None
    return _redis_client


def _lease_key(source_id: str) -> str:
    return f"serendip:crawl:lease:{source_id}"


class CrawlLease:
    """TTL lock keyed by source id.

    When Redis is unreachable the lease fails open: the crawl proceeds and
    only the in-process guards apply.
    """

    def __init__(self, client=None, *, ttl_s: int | None = None) -> None:
        self._client = client
        self.ttl_s = ttl_s if ttl_s is not None else settings.CRAWL_LEASE_TTL_S
        self.owner = uuid.uuid4().hex
        self._held: set[str] = set()

    def _redis(self):
        return self._client if self._client is not None else _get_redis()

    def acquire(self, source_id: str) -> bool:
        r = self._redis()
        if r is None:
            return True
        try:
            acquired = bool(r.set(_lease_key(source_id), self.owner, nx=True, ex=self.ttl_s))
        except Exception as exc:
            logger.warning("Crawl lease unavailable for %s, proceeding: %s", source_id, exc)
            return True
        if acquired:
            self._held.add(source_id)
        return acquired

    def renew(self, source_id: str) -> None:
        if source_id not in self._held:
            return
        r = self._redis()
        if r is None:
            return
        try:
            if r.get(_lease_key(source_id)) == self.owner:
                r.expire(_lease_key(source_id), self.ttl_s)
        except Exception as exc:
            logger.debug("Crawl lease renew failed for %s: %s", source_id, exc)

    def release(self, source_id: str) -> None:
        if source_id not in self._held:
            return
        self._held.discard(source_id)
        r = self._redis()
        if r is None:
            return
        try:
            if r.get(_lease_key(source_id)) == self.owner:
                r.delete(_lease_key(source_id))
        except Exception as exc:
            logger.debug("Crawl lease release failed for %s: %s", source_id, exc)
