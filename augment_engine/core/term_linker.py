"""Cross-reference linking of graph entity mentions in narrative text.

Plain mentions of node labels (or ids) become ``[text](node:<id>)`` markers.
Existing markdown links are never touched. Bracketed text that resolves to a
node becomes a marker; bracketed text that does not is un-bracketed so no
broken ``[Term]`` artifacts remain. The pass is idempotent.
"""

import re
from collections.abc import Iterable

from augment_engine.core.logging import get_logger
from augment_engine.core.schemas_note import GraphNode

logger = get_logger(__name__)

LinkIndex = dict[str, GraphNode]

NODE_LINK_PREFIX = "node:"

_MIN_TERM_LENGTH = 3

# Bold/italic markers tolerated around and between the words of a term
_EMPHASIS = r"(?:\*{1,2}|_{1,2})?"
_WORD_SPLIT_RE = re.compile(r"[-_\s]+")

_LEADING_EMPHASIS_RE = re.compile(r"^(?:\*{1,2}|_{1,2})")
_TRAILING_EMPHASIS_RE = re.compile(r"(?:\*{1,2}|_{1,2})$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")

_EXISTING_LINK = r"(?P<link>\[[^\[\]\n]+\]\([^)\n]+\))"
_BRACKETED = r"\[+(?P<inner>[^\[\]\n]+)\]+"


def normalize_term(text: str) -> str:
    """Lower-case, drop emphasis markers, fold hyphens/underscores to spaces."""
    folded = text.replace("*", "").lower()
    return " ".join(_WORD_SPLIT_RE.split(folded)).strip()


def _term_pattern(text: str) -> str | None:
    words = [word for word in _WORD_SPLIT_RE.split(text.strip()) if word]
    if not words:
        return None
    separator = _EMPHASIS + r"[-_\s]+" + _EMPHASIS
    return _EMPHASIS + separator.join(re.escape(word) for word in words) + _EMPHASIS


def _split_stray_emphasis(text: str) -> tuple[str, str, str]:
    """
    Move outer emphasis markers that have no partner inside the match out of it.

    ``**Hub Concept`` (from ``**Hub Concept:**``) keeps its ``**`` outside the
    link so the surrounding bold span stays balanced; ``**hub** concept``
    keeps both markers inside.
    """
    prefix = suffix = ""
    leading = _LEADING_EMPHASIS_RE.match(text)
    if leading and leading.group(0) not in text[leading.end() :]:
        prefix = leading.group(0)
        text = text[leading.end() :]
    trailing = _TRAILING_EMPHASIS_RE.search(text)
    if trailing and trailing.group(0) not in text[: trailing.start()]:
        suffix = trailing.group(0)
        text = text[: trailing.start()]
    return prefix, text, suffix


def _usable(text: str | None) -> bool:
    return bool(text) and len(text.strip()) >= _MIN_TERM_LENGTH and not any(c in text for c in "[]")


def build_link_index(nodes: Iterable[GraphNode]) -> tuple[LinkIndex, list[str]]:
    """
    Map normalized labels and ids to their nodes.

    The first node to claim a normalized key keeps it.

    Args:
        nodes: Graph nodes in document order

    Returns:
        (index, term patterns sorted longest first)
    """
    index: LinkIndex = {}
    terms: dict[str, int] = {}

    for node in nodes:
        for text in (node.label, node.id):
            if not _usable(text):
                continue
            key = normalize_term(text)
            if not key or key in index:
                continue
            index[key] = node
            pattern = _term_pattern(text)
            if pattern and pattern not in terms:
                terms[pattern] = len(key)

    ordered = sorted(terms, key=lambda pattern: (-terms[pattern], -len(pattern)))
    return index, ordered


class _Linker:
    """Holds compiled patterns for one linking pass."""

    def __init__(self, index: LinkIndex, terms: list[str]):
        self.index = index
        self.links_created = 0
        alternation = "|".join(terms)
        term_group = rf"(?P<term>(?<![\w/])(?:{alternation})(?!\w))"
        self.heading_re = re.compile(f"{_EXISTING_LINK}|{_BRACKETED}", re.IGNORECASE)
        self.body_re = re.compile(f"{_EXISTING_LINK}|{_BRACKETED}|{term_group}", re.IGNORECASE)
        self.term_re = re.compile(term_group, re.IGNORECASE)

    def _marker(self, text: str) -> str | None:
        node = self.index.get(normalize_term(text))
        if node is None:
            return None
        self.links_created += 1
        return f"[{text}]({NODE_LINK_PREFIX}{node.id})"

    def _replace_term(self, match: re.Match) -> str:
        prefix, term, suffix = _split_stray_emphasis(match.group("term"))
        marker = self._marker(term)
        if marker is None:
            return match.group(0)
        return f"{prefix}{marker}{suffix}"

    def _replace(self, match: re.Match, in_heading: bool) -> str:
        if match.group("link"):
            return match.group("link")

        inner = match.group("inner")
        if inner is not None:
            marker = self._marker(inner)
            if marker:
                return marker
            if in_heading:
                return inner
            # Un-bracketed body text gets the bare-term pass it would get on a re-run
            return self.term_re.sub(self._replace_term, inner)

        return self._replace_term(match)

    def link_line(self, line: str) -> str:
        if line.strip().startswith("#"):
            return self.heading_re.sub(lambda m: self._replace(m, in_heading=True), line)
        return self.body_re.sub(lambda m: self._replace(m, in_heading=False), line)


def link_terms(text: str, nodes: list[GraphNode]) -> str:
    """
    Convert mentions of known graph nodes into cross-reference markers.

    Fenced code blocks are passed through untouched. Heading lines: only
    bracketed text is considered. Body lines: existing links, bracketed text
    and bare occurrences of any known label or id. Multi-word labels win over
    single-word substrings.

    Args:
        text: Narrative markdown
        nodes: Graph nodes from the structured document

    Returns:
        Linked text
    """
    if not text:
        return ""
    if not nodes:
        logger.warning("No nodes provided for term linking")
        return text

    index, terms = build_link_index(nodes)
    if not terms:
        return text

    linker = _Linker(index, terms)
    lines: list[str] = []
    in_fence = False
    for line in text.split("\n"):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            lines.append(line)
        elif in_fence:
            lines.append(line)
        else:
            lines.append(linker.link_line(line))
    linked = "\n".join(lines)

    if linker.links_created > 10:
        logger.info(f"Term linking: {linker.links_created} links created")
    return linked
