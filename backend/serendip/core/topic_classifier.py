"""Keyword and domain based topic classification against the stored vocabulary."""
from __future__ import annotations

import logging
from typing import Iterable
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serendip.errors import ClassificationStoreUnavailable
from serendip.models.topic import Topic

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "weird-web"
MAX_TOPICS = 3

FALLBACK_TOPICS: tuple[str, ...] = (
    "ai", "biology-oddities", "browser-games", "business", "communities-forums",
    "culture", "design-typography", "digital-art", "diy-making", "education",
    "folklore-myth", "food", "future-scifi", "global-voices", "health",
    "history", "interactive-storytelling", "literature-writing", "mathematical-playgrounds",
    "memes-humor", "movies", "music", "music-sound", "mysteries-conspiracies",
    "nature-wildlife", "nostalgia", "philosophy-thought", "photography", "politics",
    "quizzes-puzzles", "random-generators", "reading", "retro-internet", "science",
    "self-improvement", "simulations", "space-astronomy", "sports", "streaming",
    "technology", "travel", "tv-shows", "vr-ar-experiments", "weird-web",
)

# Insertion order matters: it decides which topics survive the cap of three.
TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "technology": ("tech", "software", "computer", "programming", "code", "digital", "app", "startup", "developer", "coding"),
    "ai": ("ai", "artificial intelligence", "machine learning", "ml", "neural network", "deep learning", "gpt", "llm", "chatbot", "transformer"),
    "science": ("science", "research", "study", "discovery", "lab", "experiment", "scientific"),
    "business": ("business", "finance", "market", "economy", "company", "entrepreneur", "investment", "startup", "commerce"),
    "culture": ("culture", "cultural", "art", "artist", "creative", "fashion", "entertainment", "media"),
    "education": ("learn", "education", "course", "tutorial", "guide", "how-to", "university", "school", "teach"),
    "health": ("health", "fitness", "medical", "wellness", "nutrition", "exercise", "mental health"),
    "politics": ("politics", "government", "policy", "election", "democracy", "law", "legal", "vote"),
    "sports": ("sport", "team", "player", "match", "competition", "athletics", "game", "nfl", "nba", "soccer"),
    "food": ("food", "recipe", "cooking", "restaurant", "chef", "kitchen", "meal", "cuisine"),
    "travel": ("travel", "trip", "vacation", "destination", "tourism", "journey", "explore"),
    # creativity & expression
    "digital-art": ("digital art", "glitch", "generative", "interactive art", "ai art", "creative coding", "glitch art"),
    "music-sound": ("music", "sound", "audio", "instrument", "compose", "synthesizer", "beat", "song", "album", "artist", "band", "concert"),
    "music": ("spotify", "soundcloud", "bandcamp", "playlist", "musician"),
    "literature-writing": ("writing", "poetry", "story", "literature", "zine", "fanfiction", "creative writing", "author", "book"),
    "design-typography": ("typography", "font", "ui", "ux", "interface", "layout", "graphic design"),
    "photography": ("photography", "photo", "camera", "photographer", "instagram"),
    # curiosity & oddities
    "random-generators": ("generator", "random", "generate", "create", "maker", "builder", "procedural"),
    "weird-web": ("weird", "strange", "unusual", "quirky", "odd", "bizarre", "useless", "experimental"),
    "retro-internet": ("retro", "vintage", "old web", "geocities", "90s", "early internet", "web 1.0"),
    "nostalgia": ("nostalgia", "nostalgic", "childhood", "throwback", "80s", "70s", "classic"),
    "mysteries-conspiracies": ("mystery", "conspiracy", "unexplained", "secret", "hidden", "paranormal", "ufo"),
    "quizzes-puzzles": ("quiz", "puzzle", "riddle", "brain teaser", "challenge", "test", "trivia", "word game"),
    # play & interaction
    "browser-games": ("game", "play", "browser game", "web game", "arcade", "flash game", "html5 game"),
    "simulations": ("simulation", "simulator", "model", "physics", "virtual", "sandbox"),
    "vr-ar-experiments": ("vr", "ar", "virtual reality", "augmented reality", "immersive", "3d", "webxr"),
    "interactive-storytelling": ("interactive story", "choose your own", "narrative", "branching", "text adventure"),
    # human experience
    "history": ("history", "historical", "archive", "timeline", "past", "heritage", "ancient"),
    "folklore-myth": ("folklore", "myth", "legend", "fairy tale", "tradition", "mythology"),
    "global-voices": ("global", "international", "perspective", "world", "multicultural"),
    "philosophy-thought": ("philosophy", "philosophical", "ethics", "meaning", "existence", "thought", "existential"),
    # knowledge frontiers
    "space-astronomy": ("space", "astronomy", "cosmic", "universe", "planet", "nasa", "telescope", "mars", "moon"),
    "future-scifi": ("future", "sci-fi", "science fiction", "futuristic", "cyberpunk", "speculative"),
    "mathematical-playgrounds": ("math", "mathematics", "fractal", "geometry", "equation", "proof", "algorithm"),
    "biology-oddities": ("biology", "creature", "organism", "microscopic", "species", "evolution"),
    "nature-wildlife": ("nature", "wildlife", "animal", "environment", "ecosystem", "conservation"),
    # personal & social
    "self-improvement": ("productivity", "self improvement", "habit", "goal", "motivation", "growth", "mindfulness"),
    "memes-humor": ("meme", "funny", "humor", "comedy", "joke", "lol", "internet humor", "parody"),
    "communities-forums": ("community", "forum", "discussion", "group", "social", "chat", "reddit"),
    # media & entertainment
    "movies": ("movie", "film", "cinema", "hollywood", "documentary"),
    "tv-shows": ("tv show", "television", "series", "episode", "streaming"),
    "streaming": ("netflix", "hulu", "disney+", "stream", "watch online"),
    "reading": ("read", "ebook", "kindle", "goodreads", "literary"),
    "diy-making": ("diy", "maker", "craft", "handmade", "build", "create", "tinker"),
}

DOMAIN_TOPICS: dict[str, str] = {
    "github.com": "technology",
    "gitlab.com": "technology",
    "stackoverflow.com": "technology",
    "codepen.io": "technology",
    "glitch.com": "technology",
    "replit.com": "technology",
    "codesandbox.io": "technology",
    "itch.io": "browser-games",
    "newgrounds.com": "browser-games",
    "kongregate.com": "browser-games",
    "armorgames.com": "browser-games",
    "crazygames.com": "browser-games",
    "arxiv.org": "science",
    "nature.com": "science",
    "sciencedirect.com": "science",
    "pubmed.gov": "science",
    "nasa.gov": "space-astronomy",
    "esa.int": "space-astronomy",
    "spaceweather.com": "space-astronomy",
    "behance.net": "digital-art",
    "dribbble.com": "design-typography",
    "artstation.com": "digital-art",
    "deviantart.com": "digital-art",
    "soundcloud.com": "music-sound",
    "bandcamp.com": "music",
    "spotify.com": "music",
    "freesound.org": "music-sound",
    "archive.org": "retro-internet",
    "neocities.org": "weird-web",
    "medium.com": "literature-writing",
    "substack.com": "literature-writing",
    "ao3.org": "literature-writing",
    "reddit.com": "communities-forums",
    "discord.com": "communities-forums",
    "bloomberg.com": "business",
    "wsj.com": "business",
    "forbes.com": "business",
    "unsplash.com": "photography",
    "flickr.com": "photography",
    "500px.com": "photography",
}


class TopicVocabulary:
    """Cached set of valid topic names.

    Owned by the process entry point: call :meth:`init` at startup,
    :meth:`refresh` after topics change and :meth:`invalidate` to force a
    reload on the next :meth:`init`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory
        self._names: frozenset[str] | None = None
        self.using_fallback = False

    @classmethod
    def static(cls, names: Iterable[str] = FALLBACK_TOPICS) -> "TopicVocabulary":
        vocab = cls(None)
        vocab._names = frozenset(names)
        return vocab

    @property
    def loaded(self) -> bool:
        return self._names is not None

    @property
    def names(self) -> frozenset[str]:
        if self._names is None:
            return frozenset(FALLBACK_TOPICS)
        return self._names

    def __contains__(self, name: object) -> bool:
        return name in self.names

    async def init(self) -> frozenset[str]:
        if self._names is None:
            await self.refresh()
        return self.names

    async def refresh(self) -> frozenset[str]:
        try:
            self._names = await self._load()
            self.using_fallback = False
            logger.info("Loaded %s topics into vocabulary", len(self._names))
        except ClassificationStoreUnavailable as exc:
            if not self.using_fallback:
                logger.error("Topic store unavailable, using fallback vocabulary: %s", exc)
            self._names = frozenset(FALLBACK_TOPICS)
            self.using_fallback = True
        return self._names

    def invalidate(self) -> None:
        self._names = None

    async def _load(self) -> frozenset[str]:
        if self._session_factory is None:
            raise ClassificationStoreUnavailable("no session factory configured")
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(select(Topic.name).order_by(Topic.name))).scalars().all()
        except SQLAlchemyError as exc:
            raise ClassificationStoreUnavailable(str(exc)) from exc
        if not rows:
            raise ClassificationStoreUnavailable("topics table is empty")
        return frozenset(rows)


def _registered_domain(url: str) -> str | None:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


class TopicClassifier:
    def __init__(self, vocabulary: TopicVocabulary) -> None:
        self.vocabulary = vocabulary

    def classify(self, url: str, title: str | None = None, description: str | None = None) -> list[str]:
        """Return 1–3 vocabulary topics for a page, most specific signal first."""
        valid = self.vocabulary.names
        text = f"{url} {title or ''} {description or ''}".lower()
        topics: dict[str, None] = {}

        domain = _registered_domain(url)
        if domain is None:
            logger.warning("Could not parse URL for domain classification: %s", url)
        else:
            mapped = DOMAIN_TOPICS.get(domain)
            if mapped and mapped in valid:
                topics[mapped] = None

        for topic, keywords in TOPIC_KEYWORDS.items():
            if topic not in valid:
                continue
            if any(keyword in text for keyword in keywords):
                topics[topic] = None

        if not topics:
            fallback = DEFAULT_TOPIC if DEFAULT_TOPIC in valid else min(valid, default=None)
            if fallback is not None:
                topics[fallback] = None

        return list(topics)[:MAX_TOPICS]

    def validate(self, topics: Iterable[str]) -> list[str]:
        valid = self.vocabulary.names
        return [topic for topic in dict.fromkeys(topics) if topic in valid]
