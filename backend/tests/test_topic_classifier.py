from serendip.core.topic_classifier import (
    DEFAULT_TOPIC,
    FALLBACK_TOPICS,
    MAX_TOPICS,
    TopicClassifier,
    TopicVocabulary,
)


def _classifier(names=FALLBACK_TOPICS) -> TopicClassifier:
    return TopicClassifier(TopicVocabulary.static(names))


def test_classify_returns_unique_vocabulary_members() -> None:
    classifier = _classifier()
    samples = [
        ("https://github.com/foo/bar", "A new programming tool", "Open source software for developers"),
        ("https://blog.example.org/post", "NASA telescope finds a new planet", "Astronomy research news"),
        ("https://qqq.zz/", "Zzz", None),
    ]
    for url, title, description in samples:
        topics = classifier.classify(url, title, description)
        assert 1 <= len(topics) <= MAX_TOPICS
        assert len(set(topics)) == len(topics)
        assert all(topic in FALLBACK_TOPICS for topic in topics)


def test_domain_mapping_comes_first() -> None:
    topics = _classifier().classify("https://www.github.com/foo", "Zzz", None)
    assert topics[0] == "technology"


def test_unmatched_page_gets_default_topic() -> None:
    assert _classifier().classify("https://qqq.zz/", "Zzz", None) == [DEFAULT_TOPIC]


def test_keywords_outside_vocabulary_are_ignored() -> None:
    classifier = _classifier(["science", DEFAULT_TOPIC])
    assert classifier.classify("https://qqq.zz/", "New research study", None) == ["science"]


def test_validate_filters_and_dedupes() -> None:
    classifier = _classifier()
    assert classifier.validate(["not-a-real-topic"]) == []
    assert classifier.validate(["science", "science", "bogus", "technology"]) == ["science", "technology"]


def test_vocabulary_falls_back_when_store_is_missing(run_db) -> None:
    vocab = TopicVocabulary(None)
    assert not vocab.loaded
    assert "science" in vocab

    async def scenario(factory):
        empty = TopicVocabulary(factory)
        await empty.init()
        return empty

    loaded = run_db(scenario, topics=None)
    assert loaded.using_fallback is True
    assert loaded.names == frozenset(FALLBACK_TOPICS)


def test_vocabulary_loads_from_store_and_refreshes(run_db) -> None:
    async def scenario(factory):
        vocab = TopicVocabulary(factory)
        first = await vocab.init()
        vocab.invalidate()
        assert not vocab.loaded
        second = await vocab.init()
        return vocab, first, second

    vocab, first, second = run_db(scenario, topics=["science", "technology"])
    assert first == second == frozenset({"science", "technology"})
    assert vocab.using_fallback is False


def test_default_topic_outside_vocabulary_is_never_returned(run_db) -> None:
    async def scenario(factory):
        vocab = TopicVocabulary(factory)
        await vocab.init()
        return TopicClassifier(vocab).classify("https://zzz.example/qqq")

    topics = run_db(scenario, topics=["science", "technology"])
    assert DEFAULT_TOPIC not in topics
    assert topics == ["science"]


def test_empty_vocabulary_yields_no_topics() -> None:
    assert _classifier([]).classify("https://zzz.example/qqq") == []
