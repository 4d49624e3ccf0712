"""Prometheus metrics for the crawler pipeline and the discovery engine."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


CRAWL_JOBS_TOTAL = Counter(
    "serendip_crawl_jobs_total",
    "Crawl jobs by source type and terminal status",
    ["source_type", "status"],
)

CRAWL_REJECTED_TOTAL = Counter(
    "serendip_crawl_rejected_total",
    "Crawl requests rejected before a job was created",
    ["reason"],
)

CRAWL_ITEMS_TOTAL = Counter(
    "serendip_crawl_items_total",
    "Per-item submission outcomes",
    ["outcome"],
)

CRAWL_DURATION_SECONDS = Histogram(
    "serendip_crawl_duration_seconds",
    "Wall time of one crawl job",
    ["source_type"],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800),
)

ACTIVE_CRAWLS_GAUGE = Gauge(
    "serendip_active_crawls",
    "Crawls currently running in this process",
)

ROBOTS_FETCH_FAILURES_TOTAL = Counter(
    "serendip_robots_fetch_failures_total",
    "robots.txt fetches that fell back to the permissive default",
    ["reason"],
)

FEED_PARSE_FAILURES_TOTAL = Counter(
    "serendip_feed_parse_failures_total",
    "Feed or sitemap reads that failed",
    ["kind"],
)

TOPIC_DRIFT_REPAIRED_TOTAL = Counter(
    "serendip_topic_drift_repaired_total",
    "Content items whose topic assignments were repaired",
)

REPUTATION_UPDATES_TOTAL = Counter(
    "serendip_reputation_updates_total",
    "Domain reputation recomputations by outcome",
    ["outcome"],
)

ENRICHMENT_ITEMS_TOTAL = Counter(
    "serendip_enrichment_items_total",
    "Metadata enrichment outcomes",
    ["status"],
)

DISCOVERY_REQUESTS_TOTAL = Counter(
    "serendip_discovery_requests_total",
    "Recommendation requests by outcome",
    ["outcome"],
)

DISCOVERY_SELECTION_TOTAL = Counter(
    "serendip_discovery_selection_total",
    "Selection branch taken (top pick vs elite sample)",
    ["branch"],
)

DISCOVERY_SCORE_OBS = Histogram(
    "serendip_discovery_score",
    "Final score of the served candidate",
    buckets=(0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
)
