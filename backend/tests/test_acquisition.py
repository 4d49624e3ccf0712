import asyncio

import httpx
import pytest
from sqlalchemy import delete, func, select

from serendip.acquisition import AcquisitionEngine, CancellationToken, SubmitProgress
from serendip.core.topic_classifier import TopicClassifier, TopicVocabulary
from serendip.errors import ConcurrencyExceeded, CrawlCancelled
from serendip.feeds import FeedReader
from serendip.models import ContentItem, CrawlHistory, CrawlJob, Source, Topic, TopicAssignment
from serendip.robots import RobotsPolicyClient
from serendip.sitemaps import SitemapReader

ROBOTS = "User-agent: *\nDisallow: /private/\n"

RSS = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Example</title>
<item><title>Fresh post</title><link>https://example.com/fresh</link></item>
<item><title>Hidden post</title><link>https://example.com/private/hidden</link></item>
<item><title>Old post</title><link>https://example.com/existing</link></item>
</channel></rss>"""

URLSET = b"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/from-sitemap</loc></url>
</urlset>"""


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/robots.txt":
        return httpx.Response(200, text=ROBOTS)
    if request.url.path == "/rss":
        return httpx.Response(200, content=RSS)
    if request.url.path == "/sitemap.xml":
        return httpx.Response(200, content=URLSET)
    if request.url.path == "/broken":
        return httpx.Response(500)
    return httpx.Response(404)


def _engine(factory, enqueued: list[list[str]] | None = None, **kwargs) -> AcquisitionEngine:
    transport = httpx.MockTransport(_handler)

    def enqueue(content_ids: list[str]) -> None:
        if enqueued is not None:
            enqueued.append(content_ids)

    return AcquisitionEngine(
        factory,
        policy_client=RobotsPolicyClient(user_agent="SerendipBot/1.0", default_delay_ms=0, transport=transport),
        feed_reader=FeedReader(user_agent="SerendipBot/1.0", transport=transport),
        sitemap_reader=SitemapReader(user_agent="SerendipBot/1.0", transport=transport),
        classifier=TopicClassifier(TopicVocabulary.static()),
        enqueue_enrichment=enqueue,
        **kwargs,
    )


async def _add_source(factory, *, type: str = "feed", path: str = "/rss", topics=None) -> Source:
    async with factory() as session:
        source = Source(
            name=f"Example {path}",
            type=type,
            url=f"https://example.com{path}",
            domain="example.com",
            crawl_frequency_hours=6,
            topics=topics or [],
        )
        session.add(source)
        await session.commit()
        return source


async def _job(factory, job_id: str) -> CrawlJob:
    async with factory() as session:
        return await session.get(CrawlJob, job_id)


async def _job_count(factory) -> int:
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(CrawlJob))).scalar_one()


def test_feed_crawl_skips_duplicates_and_disallowed_urls(run_db) -> None:
    enqueued: list[list[str]] = []

    async def scenario(factory):
        source = await _add_source(factory, topics=["science"])
        async with factory() as session:
            session.add(ContentItem(url="https://example.com/existing", title="Old", domain="example.com"))
            await session.commit()

        job = await _engine(factory, enqueued).crawl_source(source)

        async with factory() as session:
            content = (
                await session.execute(select(ContentItem).where(ContentItem.url == "https://example.com/fresh"))
            ).scalar_one()
            assigned = (
                await session.execute(
                    select(Topic.name)
                    .join(TopicAssignment, TopicAssignment.topic_id == Topic.id)
                    .where(TopicAssignment.content_id == content.id)
                )
            ).scalars().all()
            history = (await session.execute(select(CrawlHistory))).scalars().all()
            stored = await session.get(Source, source.id)
        return job, content, assigned, history, stored

    job, content, assigned, history, stored = run_db(scenario)
    assert job.status == "completed"
    assert (job.items_found, job.items_submitted, job.items_failed) == (3, 1, 0)
    assert job.completed_at is not None
    assert content.source_id is not None
    assert content.topics == ["science"]
    assert set(assigned) == {"science"}
    assert [(h.url, h.submission_status) for h in history] == [("https://example.com/fresh", "submitted")]
    assert enqueued == [[content.id]]
    assert stored.last_crawled_at is not None
    assert stored.next_crawl_at is not None


def test_items_without_source_topics_are_classified(run_db) -> None:
    async def scenario(factory):
        source = await _add_source(factory, type="sitemap", path="/sitemap.xml")
        job = await _engine(factory).crawl_source(source)
        async with factory() as session:
            content = (await session.execute(select(ContentItem))).scalar_one()
        return job, content

    job, content = run_db(scenario)
    assert job.status == "completed"
    assert content.url == "https://example.com/from-sitemap"
    assert content.title == "Untitled"
    assert content.topics == ["weird-web"]


def test_feed_failure_marks_job_failed(run_db) -> None:
    async def scenario(factory):
        source = await _add_source(factory, path="/broken")
        engine = _engine(factory)
        job = await engine.crawl_source(source)
        return job, engine.active_source_ids

    job, active = run_db(scenario)
    assert job.status == "failed"
    assert job.error_message
    assert job.completed_at is not None
    assert active == frozenset()


def test_unknown_source_type_marks_job_failed(run_db) -> None:
    async def scenario(factory):
        source = await _add_source(factory, type="newsletter")
        return await _engine(factory).crawl_source(source)

    job = run_db(scenario)
    assert job.status == "failed"
    assert "newsletter" in job.error_message


def test_second_crawl_of_same_source_is_rejected_without_a_job(run_db) -> None:
    async def scenario(factory):
        source = await _add_source(factory)
        engine = _engine(factory)
        running = await engine.start_crawl(source)
        with pytest.raises(ConcurrencyExceeded):
            await engine.crawl_source(source)
        await engine.drain()
        return running, await _job(factory, running.id), await _job_count(factory)

    running, finished, count = run_db(scenario)
    assert running.status == "running"
    assert finished.status == "completed"
    assert count == 1


def test_concurrency_ceiling_rejects_other_sources(run_db) -> None:
    async def scenario(factory):
        first = await _add_source(factory)
        second = await _add_source(factory, type="sitemap", path="/sitemap.xml")
        engine = _engine(factory, max_concurrent=1)
        await engine.start_crawl(first)
        with pytest.raises(ConcurrencyExceeded, match="Maximum"):
            await engine.crawl_source(second)
        await engine.drain()
        return await _job_count(factory), engine.active_source_ids

    count, active = run_db(scenario)
    assert count == 1
    assert active == frozenset()


def test_cancellation_fails_the_running_job(run_db) -> None:
    async def scenario(factory):
        source = await _add_source(factory)
        engine = _engine(factory)
        running = await engine.start_crawl(source)
        assert engine.request_cancellation(source.id) is True
        await engine.drain()
        return await _job(factory, running.id), engine.request_cancellation(source.id)

    job, second_request = run_db(scenario)
    assert job.status == "failed"
    assert "cancelled" in job.error_message
    assert job.items_submitted == 0
    assert second_request is False


def test_cancellation_token_wait_returns_early() -> None:
    async def scenario():
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        interrupted = await token.wait(5)
        with pytest.raises(CrawlCancelled):
            token.raise_if_cancelled()
        return interrupted

    assert asyncio.run(scenario()) is True
    assert asyncio.run(CancellationToken().wait(0)) is False


def test_crawl_survives_its_job_row_being_deleted(run_db, monkeypatch) -> None:
    async def scenario(factory):
        source = await _add_source(factory)
        engine = _engine(factory)

        async def purge_jobs(source, job_id, items, token, progress) -> None:
            async with factory() as session:
                await session.execute(delete(CrawlJob))
                await session.commit()

        monkeypatch.setattr(engine, "_submit_items", purge_jobs)
        job = await engine.crawl_source(source)
        return job, await _job_count(factory), engine.active_source_ids

    job, count, active = run_db(scenario)
    assert job.status == "completed"
    assert job.completed_at is not None
    assert count == 0
    assert active == frozenset()


def test_missing_job_updates_are_dropped(run_db) -> None:
    async def scenario(factory):
        engine = _engine(factory)
        await engine._update_job("missing", items_found=3)
        failed = await engine._fail_job("missing", SubmitProgress(found=2, failed=2), "boom")
        return failed, await _job_count(factory)

    failed, count = run_db(scenario)
    assert failed.status == "failed"
    assert failed.items_found == 2
    assert failed.error_message == "boom"
    assert count == 0
