import random

import httpx

from serendip.acquisition import AcquisitionEngine
from serendip.api import domains as domains_api
from serendip.core.topic_classifier import TopicClassifier, TopicVocabulary
from serendip.db import get_session
from serendip.discovery_service import DiscoveryService
from serendip.enrichment import MetadataEnricher
from serendip.feeds import FeedReader
from serendip.main import app
from serendip.models import ContentItem
from serendip.reputation import DomainReputationManager
from serendip.robots import RobotsPolicyClient
from serendip.scheduler import CrawlScheduler
from serendip.sitemaps import SitemapReader


def _offline(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404)


def _wire(factory) -> None:
    async def session_override():
        async with factory() as session:
            yield session

    transport = httpx.MockTransport(_offline)
    engine = AcquisitionEngine(
        factory,
        policy_client=RobotsPolicyClient(default_delay_ms=0, transport=transport),
        feed_reader=FeedReader(transport=transport),
        sitemap_reader=SitemapReader(transport=transport),
        classifier=TopicClassifier(TopicVocabulary.static()),
        enqueue_enrichment=None,
    )
    app.dependency_overrides[get_session] = session_override
    app.state.scheduler = CrawlScheduler(engine, factory)
    app.state.discovery_service = DiscoveryService(factory, rng=random.Random(1))
    app.state.reputation_manager = DomainReputationManager(factory, batch_delay_s=0)
    app.state.enricher = MetadataEnricher(factory, delay_s=0, transport=transport)


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://serendip.test")


def _run(run_db, scenario):
    async def wrapped(factory):
        _wire(factory)
        try:
            async with _client() as client:
                return await scenario(client, factory)
        finally:
            app.dependency_overrides.clear()

    return run_db(wrapped)


def test_health(run_db) -> None:
    async def scenario(client, factory):
        return await client.get("/health")

    resp = _run(run_db, scenario)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_source_lifecycle(run_db) -> None:
    async def scenario(client, factory):
        rejected = await client.post(
            "/api/sources", json={"name": "Plain", "type": "feed", "url": "http://example.com/rss"}
        )
        created = await client.post(
            "/api/sources",
            json={"name": "Example", "type": "feed", "url": "https://example.com/rss", "topics": ["Science"]},
        )
        source_id = created.json()["id"]
        patched = await client.patch(f"/api/sources/{source_id}", json={"type": "sitemap"})
        moved = await client.put(f"/api/sources/{source_id}", json={"url": "https://other.example/sitemap.xml"})
        listed = await client.get("/api/sources", params={"enabled": "true"})
        deleted = await client.delete(f"/api/sources/{source_id}")
        missing = await client.get(f"/api/sources/{source_id}")
        return rejected, created, patched, moved, listed, deleted, missing

    rejected, created, patched, moved, listed, deleted, missing = _run(run_db, scenario)
    assert rejected.status_code == 422
    assert created.status_code == 201
    assert created.json()["domain"] == "example.com"
    assert created.json()["topics"] == ["science"]
    assert patched.json()["type"] == "sitemap"
    assert patched.json()["name"] == "Example"
    assert moved.json()["domain"] == "other.example"
    assert [s["id"] for s in listed.json()] == [created.json()["id"]]
    assert deleted.status_code == 204
    assert missing.status_code == 404


def test_crawl_endpoints_report_unknown_sources(run_db) -> None:
    async def scenario(client, factory):
        return (
            await client.post("/api/crawl/nope"),
            await client.post("/api/crawl/nope/cancel"),
            await client.get("/api/jobs/nope"),
            await client.get("/api/history/nope"),
            await client.get("/api/jobs"),
        )

    trigger, cancel, job, history, jobs = _run(run_db, scenario)
    assert trigger.status_code == 404
    assert cancel.status_code == 404
    assert job.status_code == 404
    assert history.status_code == 404
    assert jobs.json() == []


def test_discovery_requires_user_and_content(run_db) -> None:
    async def scenario(client, factory):
        anonymous = await client.post("/api/discovery/next", json={"wildness": 40})
        empty = await client.post("/api/discovery/next", json={"wildness": 40}, headers={"X-User-Id": "u1"})
        async with factory() as session:
            item = ContentItem(url="https://example.com/a", title="A", domain="example.com", topics=["science"])
            session.add(item)
            await session.commit()
        served = await client.post(
            "/api/discovery/next", json={"wildness": 40, "seenIds": []}, headers={"X-User-Id": "u1"}
        )
        reset = await client.post(
            "/api/discovery/next", json={"wildness": 40, "seenIds": [item.id]}, headers={"X-User-Id": "u1"}
        )
        out_of_range = await client.post(
            "/api/discovery/next", json={"wildness": 101}, headers={"X-User-Id": "u1"}
        )
        return item.id, anonymous, empty, served, reset, out_of_range

    item_id, anonymous, empty, served, reset, out_of_range = _run(run_db, scenario)
    assert anonymous.status_code == 401
    assert empty.status_code == 404
    assert served.status_code == 200
    body = served.json()
    assert body["discovery"]["id"] == item_id
    assert "resetRequired" not in body
    assert body["reason"]
    assert reset.json()["resetRequired"] is True
    assert out_of_range.status_code == 422


def test_domain_blacklist_roundtrip(run_db) -> None:
    async def scenario(client, factory):
        unknown = await client.get("/api/domains/nowhere.example/reputation")
        flagged = await client.post("/api/domains/Spam.Example/blacklist", json={"reason": "link farm"})
        listed = await client.get("/api/domains/blacklisted")
        cleared = await client.post("/api/domains/spam.example/unblacklist")
        refreshed = await client.post("/api/domains/empty.example/reputation/refresh")
        return unknown, flagged, listed, cleared, refreshed

    unknown, flagged, listed, cleared, refreshed = _run(run_db, scenario)
    assert unknown.status_code == 404
    assert flagged.json()["domain"] == "spam.example"
    assert flagged.json()["is_blacklisted"] is True
    assert [d["domain"] for d in listed.json()] == ["spam.example"]
    assert cleared.json()["is_blacklisted"] is False
    assert cleared.json()["blacklist_reason"] is None
    assert refreshed.status_code == 404


def test_update_all_is_queued(run_db, monkeypatch) -> None:
    sent: list[tuple] = []

    class FakeResult:
        id = "task-1"

    def fake_send_task(name, args=None, queue=None):
        sent.append((name, args, queue))
        return FakeResult()

    monkeypatch.setattr(domains_api.celery, "send_task", fake_send_task)

    async def scenario(client, factory):
        return await client.post("/api/domains/reputation/update-all", params={"days_threshold": 7})

    resp = _run(run_db, scenario)
    assert resp.status_code == 202
    assert resp.json() == {"status": "queued", "task_id": "task-1"}
    assert sent == [("serendip.workers.reputation.run_reputation_update_all", [7], "maintenance")]


def test_enhance_status_counts(run_db) -> None:
    async def scenario(client, factory):
        async with factory() as session:
            session.add(ContentItem(url="https://example.com/a", title="A", domain="example.com"))
            await session.commit()
        return await client.get("/api/enhance/status")

    resp = _run(run_db, scenario)
    assert resp.json()["total_content"] == 1
    assert resp.json()["needs_enhancement"] == 1
