"""Tests for the note assembly endpoints.

Runs the real assembler behind FastAPI's TestClient with a scripted producer.
"""

import json

import pytest
from fastapi.testclient import TestClient

from augment_engine.api.notes import get_assembler
from augment_engine.core.credentials import StaticCredentialStore
from augment_engine.main import app
from augment_engine.services.note_pipeline import NoteAssembler
from tests.fakes.fake_producer import (
    VALID_KEY,
    FakeProducer,
    RecordingFactory,
    narration,
    narrative_script,
    structured_script,
)

BODY = {
    "topic": "Heart Failure",
    "documents": [{"name": "lecture.txt", "text": "Lecture notes on heart failure."}],
}


def parse_sse_events(text: str) -> list[dict]:
    """Parse SSE response body into a list of event dicts."""
    events = []
    for line in text.strip().split("\n"):
        line = line.strip()
        if line.startswith("data: "):
            events.append(json.loads(line[6:]))
    return events


@pytest.fixture
def producer():
    return FakeProducer([structured_script(), narrative_script()])


@pytest.fixture
def client(settings, no_sleep, producer):
    assembler = NoteAssembler(
        settings=settings,
        credential_store=StaticCredentialStore(VALID_KEY),
        producer_factory=RecordingFactory(producer),
        sleep=no_sleep,
    )
    app.dependency_overrides[get_assembler] = lambda: assembler
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestStreamEndpoint:
    def test_streams_events_until_completed(self, client):
        response = client.post("/v1/notes/stream", json=BODY)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse_events(response.text)
        types = [event["type"] for event in events]
        assert types[0] == "stage_changed"
        assert "structure_ready" in types
        assert "narrative_delta" in types
        assert types[-1] == "completed"

        note = events[-1]["data"]["note"]
        assert note["title"] == "Heart Failure"
        assert "[BNP](node:bnp)" in note["narrative"]

    def test_bad_caller_key_yields_error_event(self, client, producer):
        response = client.post("/v1/notes/stream", json={**BODY, "api_key": "xyz123"})

        events = parse_sse_events(response.text)
        assert events == [
            {
                "type": "error",
                "code": "invalid_prefix",
                "message": "Invalid API key format. Keys start with 'sk-ant-'.",
            }
        ]
        assert producer.call_count == 0

    def test_failure_after_progress_ends_with_error_event(self, settings, no_sleep):
        failing = FakeProducer([narration("No graph in this answer.")])
        assembler = NoteAssembler(
            settings=settings,
            credential_store=StaticCredentialStore(VALID_KEY),
            producer_factory=RecordingFactory(failing),
            sleep=no_sleep,
        )
        app.dependency_overrides[get_assembler] = lambda: assembler
        try:
            response = TestClient(app).post("/v1/notes/stream", json=BODY)
        finally:
            app.dependency_overrides.clear()

        events = parse_sse_events(response.text)
        assert events[0]["type"] == "stage_changed"
        assert events[-1]["type"] == "error"
        assert events[-1]["code"] == "structured_data_absent"


class TestCreateEndpoint:
    def test_returns_note(self, client):
        response = client.post("/v1/notes", json=BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Heart Failure"
        assert [node["id"] for node in data["nodes"]] == ["heart-failure", "bnp", "ejection-fraction"]
        assert data["source_document_names"] == ["lecture.txt"]

    def test_bad_caller_key_is_400(self, client):
        response = client.post("/v1/notes", json={**BODY, "api_key": "xyz123"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_prefix"

    def test_document_without_content_is_rejected(self, client):
        response = client.post("/v1/notes", json={"topic": "X", "documents": [{"name": "empty.txt"}]})
        assert response.status_code == 422
