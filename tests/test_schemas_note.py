"""Tests for structured document schemas and the payload validation boundary."""

import pytest
from pydantic import ValidationError

from augment_engine.core.schemas_note import (
    DEFAULT_RELATIONSHIP,
    GraphLink,
    NoteRequest,
    RecoveredDocument,
    SourceDocument,
)
from tests.fakes.fake_producer import STRUCTURED_PAYLOAD


class TestGraphLink:
    def test_label_becomes_relationship(self):
        link = GraphLink.model_validate({"source": "a", "target": "b", "label": "treats"})
        assert link.relationship == "treats"

    def test_default_relationship(self):
        link = GraphLink.model_validate({"source": "a", "target": "b"})
        assert link.relationship == DEFAULT_RELATIONSHIP

    def test_node_object_endpoints(self):
        link = GraphLink.model_validate({"source": {"id": "a", "x": 1.5}, "target": 7})
        assert (link.source, link.target) == ("a", "7")


class TestRecoveredDocumentFromPayload:
    def test_full_payload(self):
        document = RecoveredDocument.from_payload(STRUCTURED_PAYLOAD, fallback_title="Topic")

        assert document.title == "Heart Failure"
        assert document.analogy.startswith("A tired pump")
        assert [node.id for node in document.nodes] == ["heart-failure", "bnp", "ejection-fraction"]
        assert document.nodes[0].weight == 20
        assert len(document.pearls) == 2

    def test_links_always_reference_nodes(self):
        """The dangling link in the payload never survives."""
        document = RecoveredDocument.from_payload(STRUCTURED_PAYLOAD)
        node_ids = {node.id for node in document.nodes}

        assert len(document.links) == 2
        assert all(link.source in node_ids and link.target in node_ids for link in document.links)

    def test_invalid_items_dropped_individually(self):
        payload = {
            "pearls": [{"type": "trivia", "content": "x"}, {"type": "exam-tip", "content": "kept"}],
            "graphNodes": [
                {"id": "a", "label": "Alpha", "group": 0},
                {"id": "a", "label": "Duplicate"},
                {"label": "No id"},
                {"id": "b", "label": "Beta", "group": "not a number"},
            ],
            "graphLinks": [{"source": "a"}, {"source": "a", "target": "b"}],
        }
        document = RecoveredDocument.from_payload(payload, fallback_title="Fallback")

        assert document.title == "Fallback"
        assert [pearl.content for pearl in document.pearls] == ["kept"]
        assert [(node.id, node.label, node.group) for node in document.nodes] == [
            ("a", "Alpha", 1),
            ("b", "Beta", 1),
        ]
        assert [(link.source, link.target) for link in document.links] == [("a", "b")]

    def test_empty_payload(self):
        document = RecoveredDocument.from_payload({}, fallback_title="Topic")

        assert document.is_empty
        assert document.title == "Topic"

    def test_validating_by_alias_drops_dangling_links(self):
        document = RecoveredDocument.model_validate(
            {
                "graphNodes": [{"id": "a", "label": "Alpha"}],
                "graphLinks": [{"source": "a", "target": "zzz"}],
            }
        )
        assert document.links == []


class TestPipelineInputs:
    def test_source_document_needs_content(self):
        with pytest.raises(ValidationError):
            SourceDocument(name="empty.pdf", mime_type="application/pdf")

    def test_note_request_defaults(self):
        request = NoteRequest()
        assert request.topic == "General Topic"
        assert request.documents == []
