"""Tests for a single narrative round."""

from unittest.mock import call

import pytest

from augment_engine.chains.generate_narrative import generate_narrative_round
from augment_engine.core.errors import EmptyOutputError
from augment_engine.core.fragments import Narration, Provenance, ProvenanceMetadata
from augment_engine.core.progress import EventChannel, PipelineEventType
from augment_engine.core.schemas_note import NoteRequest, RecoveredDocument
from tests.fakes.fake_producer import (
    COMPLETE_NARRATIVE,
    SOURCE_PROVENANCE,
    STRUCTURED_PAYLOAD,
    FakeProducer,
    narrative_script,
)

REQUEST = NoteRequest(topic="Heart Failure")
DOCUMENT = RecoveredDocument.from_payload(STRUCTURED_PAYLOAD)


class TestGenerateNarrativeRound:
    @pytest.mark.asyncio
    async def test_first_round(self, settings, no_sleep):
        producer = FakeProducer([narrative_script(provenance=SOURCE_PROVENANCE)])

        result = await generate_narrative_round(producer, REQUEST, DOCUMENT, settings, sleep=no_sleep)

        assert result.markdown == COMPLETE_NARRATIVE.strip()
        assert result.provenance == SOURCE_PROVENANCE
        request = producer.requests[0]
        assert request.reasoning_budget == settings.NARRATIVE_REASONING_BUDGET
        assert "Heart Failure, BNP, Ejection Fraction" in request.prompt
        assert "CONTINUATION MODE" not in request.instructions

    @pytest.mark.asyncio
    async def test_continuation_appends_to_previous_buffer(self, settings, no_sleep):
        previous = "# Guide\n\n## 1. Intro\n\n" + "Opening text. " * 10 + "\n\n## 2. Drugs\n\nLoop diur"
        producer = FakeProducer([[Narration("etics reduce congestion. " * 5)]])

        result = await generate_narrative_round(
            producer,
            REQUEST,
            DOCUMENT,
            settings,
            previous_buffer=previous,
            resume_marker="2. Drugs",
            sleep=no_sleep,
        )

        assert result.markdown.startswith(previous)
        assert "Loop diuretics reduce congestion." in result.markdown
        request = producer.requests[0]
        assert "CONTINUATION MODE" in request.instructions
        assert '"2. Drugs"' in request.prompt
        assert "Loop diur" in request.prompt

    @pytest.mark.asyncio
    async def test_empty_stream_retried_once(self, settings, no_sleep):
        """Zero events, then valid content: one retry, nothing duplicated."""
        producer = FakeProducer([[], narrative_script()])

        result = await generate_narrative_round(producer, REQUEST, DOCUMENT, settings, sleep=no_sleep)

        assert producer.call_count == 2
        assert result.markdown == COMPLETE_NARRATIVE.strip()
        assert producer.requests[1].reasoning_budget is None
        assert no_sleep.await_args_list == [call(settings.EMPTY_OUTPUT_COOLDOWN_SECONDS)]

    @pytest.mark.asyncio
    async def test_short_output_discarded_on_retry(self, settings, no_sleep):
        producer = FakeProducer([[Narration("Too short.")], narrative_script()])

        result = await generate_narrative_round(producer, REQUEST, DOCUMENT, settings, sleep=no_sleep)

        assert "Too short." not in result.markdown
        assert result.markdown == COMPLETE_NARRATIVE.strip()

    @pytest.mark.asyncio
    async def test_empty_twice_raises(self, settings, no_sleep):
        producer = FakeProducer([[], []])

        with pytest.raises(EmptyOutputError) as exc_info:
            await generate_narrative_round(producer, REQUEST, DOCUMENT, settings, sleep=no_sleep)

        assert exc_info.value.code == "empty_stream"
        assert producer.call_count == 2

    @pytest.mark.asyncio
    async def test_latest_provenance_wins(self, settings, no_sleep):
        later = ProvenanceMetadata(search_queries=["second query"])
        script = narrative_script(provenance=SOURCE_PROVENANCE) + [Provenance(later)]
        producer = FakeProducer([script])

        result = await generate_narrative_round(producer, REQUEST, DOCUMENT, settings, sleep=no_sleep)

        assert result.provenance == later

    @pytest.mark.asyncio
    async def test_progress_events(self, settings, no_sleep):
        channel = EventChannel()
        text = "# Long Guide\n\n" + "A complete sentence. " * 40
        producer = FakeProducer([narrative_script(text)])

        await generate_narrative_round(
            producer, REQUEST, DOCUMENT, settings, channel=channel, sleep=no_sleep
        )
        channel.close()
        events = [event async for event in channel]

        deltas = [e for e in events if e.type == PipelineEventType.NARRATIVE_DELTA]
        assert "".join(e.data["text"] for e in deltas) == text
        stages = [e.stage for e in events if e.type == PipelineEventType.STAGE_CHANGED]
        assert stages == ["writing"]
