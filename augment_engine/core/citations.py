"""Source list derivation from provenance metadata or inline citations."""

import re
from urllib.parse import quote

from augment_engine.core.fragments import ProvenanceChunk, ProvenanceMetadata
from augment_engine.core.logging import get_logger
from augment_engine.core.schemas_note import Source
from augment_engine.core.term_linker import NODE_LINK_PREFIX

logger = get_logger(__name__)

# Internal search-proxy and search-result URLs are not citable sources
EXCLUDED_URI_MARKERS = (
    "vertexaisearch.cloud.google.com",
    "google.com/search",
    "/search?",
)

SCHOLAR_SEARCH_URL = "https://scholar.google.com/scholar?q="

_INLINE_CITATION_PATTERNS = [
    # Cohen et al., 2021
    re.compile(r"\b([A-Z][a-z]+(?:\s+et\s+al\.?))\s*,\s*(\d{4})\b"),
    # Johnson & Bjordal, 2011
    re.compile(r"\b([A-Z][a-z]+\s*&\s*[A-Z][a-z]+)\s*,\s*(\d{4})\b"),
    # Mayo Clinic, 2024
    re.compile(
        r"\b([A-Z][A-Za-z\s&]+(?:Clinic|Institute|Association|Society|Organization"
        r"|WHO|CDC|NIH|College|Academy))\s*,\s*(\d{4})\b"
    ),
    # WHO, 2023
    re.compile(r"\b(WHO|CDC|NIH|FDA|AHA|ACC|ESC)\s*,\s*(\d{4})\b"),
]

_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")


def _is_excluded(uri: str) -> bool:
    return any(marker in uri for marker in EXCLUDED_URI_MARKERS)


def _web_source(chunk: ProvenanceChunk | None) -> Source | None:
    if chunk is None or chunk.web is None:
        return None
    if not chunk.web.uri or not chunk.web.title or _is_excluded(chunk.web.uri):
        return None
    return Source(title=chunk.web.title, uri=chunk.web.uri)


def _sources_from_provenance(provenance: ProvenanceMetadata) -> list[Source]:
    collected: list[Source] = []

    for chunk in provenance.chunks:
        source = _web_source(chunk)
        if source:
            collected.append(source)

    for support in provenance.supports:
        for idx in support.chunk_indices:
            if 0 <= idx < len(provenance.chunks):
                source = _web_source(provenance.chunks[idx])
                if source:
                    collected.append(source)

    if provenance.search_queries:
        logger.debug(f"Producer ran {len(provenance.search_queries)} web search queries")
    return collected


def _sources_from_text(narrative: str) -> list[Source]:
    collected: list[Source] = []

    citations: list[str] = []
    for pattern in _INLINE_CITATION_PATTERNS:
        for match in pattern.finditer(narrative):
            citation = f"{match.group(1).strip()}, {match.group(2)}"
            if citation not in citations:
                citations.append(citation)

    for citation in citations:
        collected.append(
            Source(title=citation, uri=SCHOLAR_SEARCH_URL + quote(citation, safe="~()*!.'"))
        )

    for match in _MARKDOWN_LINK_RE.finditer(narrative):
        title, uri = match.group(1), match.group(2)
        if uri.startswith(NODE_LINK_PREFIX):
            continue
        collected.append(Source(title=title, uri=uri))

    return collected


def dedupe_sources(sources: list[Source]) -> list[Source]:
    """Keep the first source per uri, preserving order."""
    seen: set[str] = set()
    unique: list[Source] = []
    for source in sources:
        if source.uri in seen:
            continue
        seen.add(source.uri)
        unique.append(source)
    return unique


def extract_sources(provenance: ProvenanceMetadata | None, narrative: str) -> list[Source]:
    """
    Build the deduplicated source list for a narrative.

    Priority:
    1. Web chunks listed directly in the provenance metadata
    2. Web chunks reachable through support-segment indices
    3. When provenance is absent or yields nothing: inline citation shapes
       (author et al., A & B, organization, acronym; each with a year) and
       markdown links with http(s) targets. Cross-reference markers are never
       treated as sources.

    Internal search-proxy URLs are filtered out of 1 and 2.

    Args:
        provenance: Provenance metadata from the producer, if any
        narrative: Final narrative text

    Returns:
        Sources, unique by uri, in discovery order
    """
    sources: list[Source] = []
    if provenance is not None:
        sources = dedupe_sources(_sources_from_provenance(provenance))

    if not sources:
        logger.info("No provenance sources found, extracting from inline citations")
        sources = dedupe_sources(_sources_from_text(narrative))

    logger.info(f"Extracted {len(sources)} unique source citations")
    return sources
