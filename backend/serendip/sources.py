"""Source records: request validation and partial updates."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from serendip.models.source import Source, SourceType

# Every column a client may change. SourceUpdate must expose all of them.
MUTABLE_SOURCE_FIELDS = frozenset(
    {"name", "type", "url", "crawl_frequency_hours", "topics", "enabled", "extract_links"}
)


def domain_from_url(url: str) -> str:
    host = urlparse(url).hostname
    if not host:
        raise ValueError(f"URL has no host: {url}")
    return host.lower()


def _require_https(url: str) -> str:
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme != "https" or not parsed.netloc:
        raise ValueError("Only HTTPS URLs are allowed")
    return url


def _clean_topics(topics: list[str] | None) -> list[str] | None:
    if topics is None:
        return None
    seen: list[str] = []
    for topic in topics:
        name = str(topic).strip().lower()
        if name and name not in seen:
            seen.append(name)
    return seen


class SourceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: SourceType
    url: str
    crawl_frequency_hours: int = Field(default=24, ge=1, le=168)
    topics: list[str] = Field(default_factory=list)
    enabled: bool = True
    extract_links: bool = False

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _require_https(v)

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: list[str]) -> list[str]:
        return _clean_topics(v) or []

    @property
    def domain(self) -> str:
        return domain_from_url(self.url)

    def to_model(self) -> Source:
        return Source(
            name=self.name.strip(),
            type=self.type.value,
            url=self.url,
            domain=self.domain,
            crawl_frequency_hours=self.crawl_frequency_hours,
            topics=self.topics,
            enabled=self.enabled,
            extract_links=self.extract_links,
        )


class SourceUpdate(BaseModel):
    """Partial update; only fields present in the request are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: SourceType | None = None
    url: str | None = None
    crawl_frequency_hours: int | None = Field(default=None, ge=1, le=168)
    topics: list[str] | None = None
    enabled: bool | None = None
    extract_links: bool | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        return _require_https(v) if v is not None else None

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: list[str] | None) -> list[str] | None:
        return _clean_topics(v)


class SourceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str
    url: str
    domain: str
    crawl_frequency_hours: int
    enabled: bool
    topics: list[str]
    extract_links: bool
    last_crawled_at: datetime | None = None
    next_crawl_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def apply_source_update(source: Source, payload: SourceUpdate) -> dict[str, Any]:
    """Copy the explicitly-set fields onto ``source``. Returns what changed."""
    changes = payload.model_dump(exclude_unset=True)
    applied: dict[str, Any] = {}
    for name, value in changes.items():
        if name not in MUTABLE_SOURCE_FIELDS or value is None:
            continue
        if isinstance(value, SourceType):
            value = value.value
        setattr(source, name, value)
        applied[name] = value
    if "url" in applied:
        source.domain = domain_from_url(applied["url"])
        applied["domain"] = source.domain
    return applied
