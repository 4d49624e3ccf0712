"""robots.txt policy client with a per-domain TTL cache.

Failures to fetch robots.txt are treated as an empty document, i.e. every
path is allowed. That permissive default is logged and counted so operators
can see how often it is used.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx

from serendip.config import settings
from serendip.errors import PolicyUnavailable
from serendip.metrics import ROBOTS_FETCH_FAILURES_TOTAL

logger = logging.getLogger(__name__)


@dataclass
class CrawlPolicy:
    """Parsed robots.txt rules for one domain."""

    domain: str
    parser: RobotFileParser
    user_agent: str
    default_delay_ms: int
    fetched: bool = True
    error: str | None = None
    _sitemaps: list[str] = field(default_factory=list)

    def is_allowed(self, url: str, user_agent: str | None = None) -> bool:
        return self.parser.can_fetch(user_agent or self.user_agent, url)

    def crawl_delay_ms(self, user_agent: str | None = None) -> int:
        delay = self.parser.crawl_delay(user_agent or self.user_agent)
        if delay:
            return int(float(delay) * 1000)
        return self.default_delay_ms

    def sitemap_urls(self) -> list[str]:
        return list(self._sitemaps)


def _parse_policy(domain: str, text: str, *, user_agent: str, default_delay_ms: int) -> CrawlPolicy:
    parser = RobotFileParser(f"https://{domain}/robots.txt")
    # parse() also stamps last_checked, without which can_fetch() denies everything.
    parser.parse(text.splitlines())
    return CrawlPolicy(
        domain=domain,
        parser=parser,
        user_agent=user_agent,
        default_delay_ms=default_delay_ms,
        _sitemaps=list(parser.site_maps() or []),
    )


class RobotsPolicyClient:
    """Fetches, parses and caches robots.txt per domain."""

    def __init__(
        self,
        *,
        user_agent: str | None = None,
        timeout_s: float | None = None,
        cache_ttl_s: int | None = None,
        default_delay_ms: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.user_agent = user_agent or settings.CRAWLER_USER_AGENT
        self.timeout_s = timeout_s if timeout_s is not None else settings.ROBOTS_TIMEOUT_S
        self.cache_ttl_s = cache_ttl_s if cache_ttl_s is not None else settings.ROBOTS_CACHE_TTL_S
        self.default_delay_ms = (
            default_delay_ms if default_delay_ms is not None else settings.DEFAULT_CRAWL_DELAY_MS
        )
        self._transport = transport
        self._clock = clock
        self._cache: dict[str, tuple[CrawlPolicy, float]] = {}

    async def get_policy(self, domain: str) -> CrawlPolicy:
        domain = domain.lower()
        cached = self._cache.get(domain)
        if cached and cached[1] > self._clock():
            return cached[0]

        try:
            text = await self._fetch(domain)
            policy = _parse_policy(
                domain, text, user_agent=self.user_agent, default_delay_ms=self.default_delay_ms
            )
        except PolicyUnavailable as exc:
            logger.warning("Using permissive robots policy: %s", exc)
            ROBOTS_FETCH_FAILURES_TOTAL.labels(reason=exc.reason.split(":")[0]).inc()
            policy = _parse_policy(
                domain, "", user_agent=self.user_agent, default_delay_ms=self.default_delay_ms
            )
            policy.fetched = False
            policy.error = exc.reason

        self._cache[domain] = (policy, self._clock() + self.cache_ttl_s)
        return policy

    async def _fetch(self, domain: str) -> str:
        url = f"https://{domain}/robots.txt"
        try:
            async with httpx.AsyncClient(
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout_s,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
        except httpx.TimeoutException as exc:
            raise PolicyUnavailable(domain, f"Timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise PolicyUnavailable(domain, f"{type(exc).__name__}: {exc}") from exc

        if not resp.is_success:
            # A missing robots.txt is the common case and simply means allow-all.
            if resp.status_code != 404:
                raise PolicyUnavailable(domain, f"HTTPStatus: {resp.status_code}")
            return ""
        return resp.text

    async def is_allowed_url(self, url: str) -> bool:
        """Resolve the domain from ``url`` and check it. Unparseable URLs are denied."""
        domain = urlparse(url).hostname
        if not domain:
            logger.error("Cannot check robots.txt for malformed URL %s", url)
            return False
        policy = await self.get_policy(domain)
        return policy.is_allowed(url)

    async def crawl_delay_ms(self, domain: str) -> int:
        return (await self.get_policy(domain)).crawl_delay_ms()

    async def sitemap_urls(self, domain: str) -> list[str]:
        return (await self.get_policy(domain)).sitemap_urls()

    def invalidate(self, domain: str | None = None) -> None:
        if domain is None:
            self._cache.clear()
        else:
            self._cache.pop(domain.lower(), None)
