"""Typed failures raised across the crawler and discovery layers."""
from __future__ import annotations


class SerendipError(Exception):
    """Base class for domain errors."""


class PolicyUnavailable(SerendipError):
    """robots.txt could not be fetched; callers fall back to allow-all."""

    def __init__(self, domain: str, reason: str) -> None:
        super().__init__(f"robots.txt unavailable for {domain}: {reason}")
        self.domain = domain
        self.reason = reason


class FeedParseFailure(SerendipError):
    """A feed or sitemap could not be fetched or parsed."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to read {url}: {reason}")
        self.url = url
        self.reason = reason


class ItemSubmissionFailure(SerendipError):
    """A single discovered URL could not be stored."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to submit {url}: {reason}")
        self.url = url
        self.reason = reason


class ConcurrencyExceeded(SerendipError):
    """Crawl rejected: already running, or the concurrency ceiling is reached."""


class ClassificationStoreUnavailable(SerendipError):
    """The topic vocabulary could not be loaded from the store."""


class ReputationComputeFailure(SerendipError):
    def __init__(self, domain: str, reason: str) -> None:
        super().__init__(f"Reputation update failed for {domain}: {reason}")
        self.domain = domain


class NoCandidatesAvailable(SerendipError):
    """No active content exists to recommend."""


class SourceNotFound(SerendipError):
    def __init__(self, source_id: str) -> None:
        super().__init__("Source not found")
        self.source_id = source_id


class CrawlCancelled(SerendipError):
    """Cooperative cancellation was observed mid-crawl."""
