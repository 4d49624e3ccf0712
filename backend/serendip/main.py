"""FastAPI application: crawler control, discovery, health and metrics."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    generate_latest,
    multiprocess,
)
from starlette.responses import PlainTextResponse, Response

from serendip.acquisition import AcquisitionEngine
from serendip.config import settings
from serendip.core.topic_classifier import TopicClassifier, TopicVocabulary
from serendip.crawl_lease import CrawlLease
from serendip.db import async_session_factory
from serendip.discovery_service import DiscoveryService
from serendip.enrichment import MetadataEnricher
from serendip.feeds import FeedReader
from serendip.logging_config import setup_logging
from serendip.reputation import DomainReputationManager
from serendip.robots import RobotsPolicyClient
from serendip.scheduler import CrawlScheduler
from serendip.sitemaps import SitemapReader

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire components, start and stop the scheduler."""
    setup_logging()
    logger.info("Serendip API starting", extra={"env": settings.APP_ENV})

    vocabulary = TopicVocabulary(async_session_factory)
    await vocabulary.init()

    engine = AcquisitionEngine(
        async_session_factory,
        policy_client=RobotsPolicyClient(),
        feed_reader=FeedReader(),
        sitemap_reader=SitemapReader(),
        classifier=TopicClassifier(vocabulary),
        lease=CrawlLease(),
    )
    scheduler = CrawlScheduler(engine, async_session_factory)

    app.state.vocabulary = vocabulary
    app.state.engine = engine
    app.state.scheduler = scheduler
    app.state.reputation_manager = DomainReputationManager(async_session_factory)
    app.state.enricher = MetadataEnricher(async_session_factory)
    app.state.discovery_service = DiscoveryService(async_session_factory)

    if settings.SCHEDULER_ENABLED:
        await scheduler.start()
    else:
        await scheduler.recover_orphaned_jobs()
        logger.info("Crawl scheduler disabled")

    yield

    await scheduler.stop()
    logger.info("Serendip API shutting down")


app = FastAPI(
    title="Serendip",
    version="0.1.0",
    description="Serendipity feed core: source crawler and discovery engine",
    lifespan=lifespan,
)

# ── CORS ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.APP_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


from serendip.api.crawl import router as crawl_router
from serendip.api.discovery import router as discovery_router
from serendip.api.domains import router as domains_router
from serendip.api.enhance import router as enhance_router
from serendip.api.sources import router as sources_router

app.include_router(discovery_router)
app.include_router(crawl_router)
app.include_router(sources_router)
app.include_router(enhance_router)
app.include_router(domains_router)


# ── Health ──
@app.get("/health", tags=["ops"])
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok", "service": "serendip"}


# ── Prometheus Metrics ──
@app.get("/metrics", tags=["ops"])
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    try:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        data = generate_latest(registry)
    except ValueError:
        # Not running in multiprocess mode
        data = generate_latest()
    return PlainTextResponse(content=data, media_type=CONTENT_TYPE_LATEST)
