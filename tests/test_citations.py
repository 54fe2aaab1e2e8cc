"""Tests for source list derivation."""

from augment_engine.core.citations import SCHOLAR_SEARCH_URL, extract_sources
from augment_engine.core.fragments import (
    ProvenanceChunk,
    ProvenanceMetadata,
    ProvenanceSupport,
    WebRef,
)
from augment_engine.core.schemas_note import Source


def _chunk(uri: str, title: str) -> ProvenanceChunk:
    return ProvenanceChunk(web=WebRef(uri=uri, title=title))


class TestProvenanceSources:
    def test_chunks_filtered_and_deduplicated(self):
        provenance = ProvenanceMetadata(
            chunks=[
                _chunk("https://www.nejm.org/a", "NEJM"),
                _chunk("https://vertexaisearch.cloud.google.com/redirect/x", "proxy"),
                _chunk("https://www.nejm.org/a", "NEJM again"),
                ProvenanceChunk(web=None),
            ],
            supports=[ProvenanceSupport(chunk_indices=[0, 1, 7])],
        )

        sources = extract_sources(provenance, "narrative")

        assert sources == [Source(title="NEJM", uri="https://www.nejm.org/a")]

    def test_camel_case_wire_shape(self):
        provenance = ProvenanceMetadata.model_validate(
            {
                "groundingChunks": [{"web": {"uri": "https://who.int/hf", "title": "WHO"}}],
                "groundingSupports": [{"groundingChunkIndices": [0], "segmentText": "x"}],
                "webSearchQueries": ["heart failure guideline"],
            }
        )
        assert extract_sources(provenance, "") == [Source(title="WHO", uri="https://who.int/hf")]


class TestTextFallback:
    def test_inline_citations_become_scholar_searches(self):
        narrative = "BNP is sensitive (Smith et al., 2021) and endorsed (WHO, 2023)."
        sources = extract_sources(None, narrative)

        titles = [source.title for source in sources]
        assert "Smith et al., 2021" in titles
        assert "WHO, 2023" in titles
        assert all(source.uri.startswith(SCHOLAR_SEARCH_URL) for source in sources)

    def test_markdown_links_but_not_node_markers(self):
        narrative = (
            "See [the guideline](https://www.ahajournals.org/hf) and "
            "[Heart Failure](node:heart-failure)."
        )
        sources = extract_sources(None, narrative)

        assert sources == [Source(title="the guideline", uri="https://www.ahajournals.org/hf")]

    def test_empty_provenance_falls_back_to_text(self):
        provenance = ProvenanceMetadata(
            chunks=[_chunk("https://www.google.com/search?q=hf", "search")]
        )
        sources = extract_sources(provenance, "[AHA](https://www.heart.org/hf)")

        assert sources == [Source(title="AHA", uri="https://www.heart.org/hf")]

    def test_nothing_found(self):
        assert extract_sources(None, "No citations at all.") == []
