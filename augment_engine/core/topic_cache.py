"""Topic extraction from narrative headings, with a read-through cache.

The cache is owned by a ``NoteAssembler`` instance and bounded in size. Keys
are SHA-256 fingerprints of the narrative, so identical content is parsed
once no matter how many pipeline runs ask for it. Writers use
insert-if-absent.
"""

import hashlib
import re
from collections import OrderedDict
from collections.abc import Callable

from augment_engine.core.schemas_note import QuizTopic

_HEADING_RE = re.compile(r"^#{1,3}\s+(.+)$", re.MULTILINE)
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_BRACKET_RE = re.compile(r"\[([^\]]+)\]")
_MARKUP_RE = re.compile(r"[*_`]")
_NODE_REF_RE = re.compile(r"\(node:[^)]+\)")

FULL_GUIDE_TOPIC = QuizTopic(id="full-guide", name="Full Guide (All Topics)", question_count=5)

DEFAULT_MAX_ENTRIES = 256


def content_fingerprint(markdown: str) -> str:
    return hashlib.sha256(markdown.encode("utf-8")).hexdigest()


def _clean_heading(text: str) -> str:
    text = _LINK_RE.sub(r"\1", text)
    text = _BRACKET_RE.sub(r"\1", text)
    text = _MARKUP_RE.sub("", text)
    text = _NODE_REF_RE.sub("", text)
    return text.strip()


def extract_topics(markdown: str) -> list[QuizTopic]:
    """
    Derive reviewable topics from H1-H3 headings.

    Headings shorter than 4 or longer than 79 characters, and tables of
    contents, are skipped. A "Full Guide" entry leads the list whenever any
    topic is found.
    """
    topics: list[QuizTopic] = []
    for match in _HEADING_RE.finditer(markdown):
        name = _clean_heading(match.group(1))
        if len(name) <= 3 or len(name) >= 80 or "table of contents" in name.lower():
            continue
        topics.append(QuizTopic(id=f"topic-{len(topics)}", name=name))

    if topics:
        topics.insert(0, FULL_GUIDE_TOPIC)
    return topics


class TopicCache:
    """
    Get-or-compute cache of topics keyed by content fingerprint.

    Holds at most ``max_entries`` fingerprints; the least recently used entry
    is evicted first.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, list[QuizTopic]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, markdown: str) -> list[QuizTopic] | None:
        key = content_fingerprint(markdown)
        cached = self._entries.get(key)
        if cached is not None:
            self._entries.move_to_end(key)
        return cached

    def get_or_compute(
        self,
        markdown: str,
        compute: Callable[[str], list[QuizTopic]] = extract_topics,
    ) -> list[QuizTopic]:
        key = content_fingerprint(markdown)
        cached = self._entries.get(key)
        if cached is not None:
            self._entries.move_to_end(key)
            return cached

        # setdefault keeps whichever writer got there first
        topics = self._entries.setdefault(key, compute(markdown))
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return topics
