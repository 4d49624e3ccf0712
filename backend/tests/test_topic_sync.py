from sqlalchemy import select

from serendip.core.topic_sync import assign_topics, find_topic_drift, repair_topic_drift
from serendip.models import ContentItem, Topic, TopicAssignment


async def _assigned_names(session, content_id: str) -> set[str]:
    rows = await session.execute(
        select(Topic.name)
        .join(TopicAssignment, TopicAssignment.topic_id == Topic.id)
        .where(TopicAssignment.content_id == content_id)
    )
    return set(rows.scalars())


def test_assign_topics_writes_both_representations(run_db) -> None:
    async def scenario(factory):
        async with factory() as session:
            content = ContentItem(url="https://example.com/a", title="A", domain="example.com")
            result = await assign_topics(session, content, ["science", "bogus", "science", "technology"])
            await session.commit()
            return result, content.topics, await _assigned_names(session, content.id)

    result, denormalized, assigned = run_db(scenario)
    assert result.topics == ["science", "technology"]
    assert denormalized == ["science", "technology"]
    assert assigned == {"science", "technology"}
    assert result.added == 2


def test_reassign_removes_stale_assignments(run_db) -> None:
    async def scenario(factory):
        async with factory() as session:
            content = ContentItem(url="https://example.com/a", title="A", domain="example.com")
            await assign_topics(session, content, ["science", "technology"])
            result = await assign_topics(session, content, ["technology", "history"])
            await session.commit()
            confidences = (
                await session.execute(
                    select(TopicAssignment.confidence).where(TopicAssignment.content_id == content.id)
                )
            ).scalars().all()
            return result, await _assigned_names(session, content.id), confidences

    result, assigned, confidences = run_db(scenario)
    assert (result.added, result.removed) == (1, 1)
    assert assigned == {"technology", "history"}
    assert confidences == [0.8, 0.8]


def test_drift_is_found_and_repaired_from_denormalized_list(run_db) -> None:
    async def scenario(factory):
        async with factory() as session:
            synced = ContentItem(url="https://example.com/ok", title="OK", domain="example.com")
            await assign_topics(session, synced, ["science"])
            # written outside the single write path
            drifted = ContentItem(
                url="https://example.com/drift", title="Drift", domain="example.com", topics=["history"]
            )
            session.add(drifted)
            await session.commit()

        async with factory() as session:
            before = await find_topic_drift(session)

        summary = await repair_topic_drift(factory)

        async with factory() as session:
            after = await find_topic_drift(session)
            names = await _assigned_names(session, drifted.id)
        return drifted.id, before, summary, after, names

    drifted_id, before, summary, after, names = run_db(scenario)
    assert [d.content_id for d in before] == [drifted_id]
    assert before[0].denormalized == ["history"]
    assert before[0].assigned == []
    assert summary.repaired == 1 and summary.failed == 0
    assert after == []
    assert names == {"history"}
