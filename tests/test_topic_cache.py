"""Tests for heading-derived topics and the fingerprint cache."""

from unittest.mock import MagicMock

import pytest

from augment_engine.core.schemas_note import QuizTopic
from augment_engine.core.topic_cache import (
    FULL_GUIDE_TOPIC,
    TopicCache,
    content_fingerprint,
    extract_topics,
)

MARKDOWN = (
    "# Heart Failure\n"
    "## Table of Contents\n"
    "## 1. [Overview](node:overview)\n"
    "### **BNP**\n"
    "#### Deep Detail Heading\n"
    "## " + "x" * 85 + "\n"
)


class TestExtractTopics:
    def test_headings_become_topics(self):
        topics = extract_topics(MARKDOWN)

        assert topics[0] == FULL_GUIDE_TOPIC
        assert [topic.name for topic in topics[1:]] == ["Heart Failure", "1. Overview"]
        assert [topic.id for topic in topics[1:]] == ["topic-0", "topic-1"]
        assert all(topic.question_count == 3 for topic in topics[1:])

    def test_no_headings(self):
        assert extract_topics("Plain text only.") == []


class TestTopicCache:
    def test_computes_once_per_content(self):
        cache = TopicCache()
        compute = MagicMock(return_value=[QuizTopic(id="topic-0", name="Cached")])

        first = cache.get_or_compute("# Cached\n", compute)
        second = cache.get_or_compute("# Cached\n", compute)

        assert first is second
        compute.assert_called_once_with("# Cached\n")
        assert len(cache) == 1
        assert cache.get("# Cached\n") is first

    def test_distinct_content_distinct_entries(self):
        cache = TopicCache()
        cache.get_or_compute("# One Topic\n")
        cache.get_or_compute("# Two Topic\n")

        assert len(cache) == 2
        assert cache.get("# Three Topic\n") is None

    def test_fingerprint_is_sha256(self):
        fingerprint = content_fingerprint("abc")
        assert len(fingerprint) == 64
        assert fingerprint == content_fingerprint("abc")
        assert fingerprint != content_fingerprint("abd")

    def test_entries_stay_within_bound(self):
        cache = TopicCache(max_entries=3)

        for i in range(10):
            cache.get_or_compute(f"# Topic number {i}\n")

        assert len(cache) == 3
        assert cache.get("# Topic number 0\n") is None
        assert cache.get("# Topic number 9\n") is not None

    def test_least_recently_used_is_evicted(self):
        cache = TopicCache(max_entries=2)
        cache.get_or_compute("# First Topic\n")
        cache.get_or_compute("# Second Topic\n")

        cache.get("# First Topic\n")
        cache.get_or_compute("# Third Topic\n")

        assert cache.get("# First Topic\n") is not None
        assert cache.get("# Second Topic\n") is None

    def test_bound_must_be_positive(self):
        with pytest.raises(ValueError):
            TopicCache(max_entries=0)
