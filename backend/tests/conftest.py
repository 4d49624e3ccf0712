import asyncio
from typing import Any, Awaitable, Callable, Iterable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from serendip.core.topic_classifier import FALLBACK_TOPICS
from serendip.db import Base
from serendip.models import Topic

SessionFactory = async_sessionmaker[AsyncSession]


async def _seed_topics(factory: SessionFactory, names: Iterable[str]) -> None:
    async with factory() as session:
        session.add_all(Topic(name=name) for name in names)
        await session.commit()


def run_with_db(
    test: Callable[[SessionFactory], Awaitable[Any]],
    *,
    topics: Iterable[str] | None = FALLBACK_TOPICS,
) -> Any:
    """Run ``test`` against a fresh in-memory sqlite database inside one event loop."""

    async def _main() -> Any:
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            if topics:
                await _seed_topics(factory, topics)
            return await test(factory)
        finally:
            await engine.dispose()

    return asyncio.run(_main())


@pytest.fixture
def run_db() -> Callable[..., Any]:
    return run_with_db
