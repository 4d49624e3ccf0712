"""Models package: re-exports every ORM class so metadata sees all tables."""
from serendip.models.source import Source, SourceType  # noqa: F401
from serendip.models.crawl import CrawlHistory, CrawlJob, CrawlJobStatus  # noqa: F401
from serendip.models.content import ContentItem, ContentMetrics  # noqa: F401
from serendip.models.topic import Topic, TopicAssignment  # noqa: F401
from serendip.models.reputation import DomainReputation, ModerationRecord  # noqa: F401
from serendip.models.user import DiscoveryEvent, UserInteraction, UserProfile  # noqa: F401
