"""Structured-document round: title, summary, pearls and knowledge graph.

One producer call, repeated once when the stream comes back empty. The
stream is consumed in order; the narration is buffered, then run through
bracket-aware extraction and the sanitization pipeline before being
validated into a ``RecoveredDocument``.
"""

# ruff: noqa: E501

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable

from augment_engine.core.config import Settings
from augment_engine.core.errors import EmptyOutputError, StructuredDataAbsent
from augment_engine.core.fragments import Narration, Provenance, Reasoning
from augment_engine.core.json_recovery import recover_json_object
from augment_engine.core.logging import get_logger, log_with_context, text_preview
from augment_engine.core.progress import (
    GRAPH_MARKER,
    EventChannel,
    PipelineEvent,
    PipelineEventType,
    PipelinePhase,
    StructureStageTracker,
    emit,
)
from augment_engine.core.schemas_note import NoteRequest, RecoveredDocument
from augment_engine.services.producer import NoteProducer, ProducerRequest

logger = get_logger(__name__)

# Overlap so a marker split across two chunks is still seen
_MARKER_OVERLAP = len(GRAPH_MARKER)


SYSTEM_PROMPT = """You are an expert educator turning source material into a structured study aid.

Read every uploaded document. Use web search to verify facts and to fill gaps the material leaves open.

Respond with ONE JSON object and nothing else. No prose before or after it, no markdown fences.

Schema:
{
  "title": "Concise title for the topic",
  "summary": "Two to four sentence overview",
  "eli5Analogy": "One analogy a beginner would understand",
  "pearls": [
    {"type": "gap-filler" | "exam-tip" | "red-flag" | "fact-check", "content": "...", "citation": "optional source"}
  ],
  "graphNodes": [
    {"id": "kebab-case-id", "label": "Display Name", "group": 1, "val": 10, "description": "One line", "details": "Markdown detail", "synonyms": ["alternate name"]}
  ],
  "graphLinks": [
    {"source": "node-id", "target": "node-id", "relationship": "causes"}
  ]
}

Rules:
- 15 to 40 nodes. Every node id is unique. "group" is a small positive integer grouping related concepts.
- Every link references node ids that exist in graphNodes.
- 5 to 12 pearls. Pearls fill gaps in the material, flag exam traps, or correct common misconceptions.
- Escape quotes and backslashes inside strings. Do not put raw line breaks inside strings.
"""


def build_structure_prompt(request: NoteRequest) -> str:
    lines = [f'Build the structured study aid for "{request.topic}".']
    if request.documents:
        names = ", ".join(doc.name for doc in request.documents)
        lines.append(f"Uploaded material ({len(request.documents)} file(s)): {names}")
    if request.instructions:
        lines.append(f"Additional instructions from the learner:\n{request.instructions}")
    lines.append("Return the JSON object now.")
    return "\n\n".join(lines)


async def _consume_structured_round(
    producer: NoteProducer,
    producer_request: ProducerRequest,
    tracker: StructureStageTracker,
    channel: EventChannel | None,
) -> str:
    raw_text = ""
    event_count = 0
    async for fragment in producer.stream(producer_request):
        event_count += 1
        transitions = []

        if isinstance(fragment, Reasoning):
            emit(
                channel,
                PipelineEvent(
                    type=PipelineEventType.REASONING,
                    phase=PipelinePhase.STRUCTURE,
                    stage=tracker.stage.value,
                    data={"text": fragment.text},
                ),
            )
            transitions = tracker.on_reasoning(fragment.text)
        elif isinstance(fragment, Narration):
            raw_text += fragment.text
            transitions = tracker.on_narration(
                raw_text[-(len(fragment.text) + _MARKER_OVERLAP) :]
            )
        elif isinstance(fragment, Provenance):
            transitions = tracker.on_provenance()

        for stage in transitions:
            emit(
                channel,
                PipelineEvent(
                    type=PipelineEventType.STAGE_CHANGED,
                    phase=PipelinePhase.STRUCTURE,
                    stage=stage.value,
                ),
            )

    if event_count == 0:
        raise EmptyOutputError(
            "The producer returned an empty stream for the structured document.",
            code="empty_stream",
        )
    return raw_text


async def generate_note_graph(
    producer: NoteProducer,
    request: NoteRequest,
    settings: Settings,
    channel: EventChannel | None = None,
    run_id: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RecoveredDocument:
    """
    Run the structured-document round.

    An empty stream is retried once after ``EMPTY_OUTPUT_COOLDOWN_SECONDS``,
    without extended thinking.

    Args:
        producer: Producer bound to a validated credential
        request: Pipeline inputs
        settings: Generation settings
        channel: Optional progress channel
        run_id: Run identifier for log lines
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        RecoveredDocument with at least one node

    Raises:
        EmptyOutputError: The stream yielded no events, twice
        StructuredDataAbsent: Nothing usable survived recovery
        TransientProducerError: Propagated from the producer for the executor to retry
    """
    producer_request = ProducerRequest(
        instructions=SYSTEM_PROMPT,
        prompt=build_structure_prompt(request),
        documents=request.documents,
        enable_web_search=settings.WEB_SEARCH_ENABLED,
        temperature=settings.GENERATION_TEMPERATURE,
        reasoning_budget=settings.STRUCTURE_REASONING_BUDGET,
        max_output_tokens=settings.STRUCTURE_MAX_TOKENS,
    )

    tracker = StructureStageTracker()
    emit(
        channel,
        PipelineEvent(
            type=PipelineEventType.STAGE_CHANGED,
            phase=PipelinePhase.STRUCTURE,
            stage=tracker.stage.value,
        ),
    )

    try:
        raw_text = await _consume_structured_round(producer, producer_request, tracker, channel)
    except EmptyOutputError as e:
        log_with_context(
            logger,
            logging.WARNING,
            "Empty structured output, retrying once without extended thinking",
            run_id=run_id,
            phase=PipelinePhase.STRUCTURE.value,
            cooldown=settings.EMPTY_OUTPUT_COOLDOWN_SECONDS,
        )
        await sleep(settings.EMPTY_OUTPUT_COOLDOWN_SECONDS)

        retry_request = dataclasses.replace(producer_request, reasoning_budget=None)
        try:
            raw_text = await _consume_structured_round(producer, retry_request, tracker, channel)
        except EmptyOutputError as retry_error:
            raise EmptyOutputError(
                "The producer returned no structured output after a retry. Please try again.",
                code=retry_error.code,
            ) from e

    log_with_context(
        logger,
        logging.DEBUG,
        "Structured round finished",
        run_id=run_id,
        phase=PipelinePhase.STRUCTURE.value,
        chars=len(raw_text),
        preview=text_preview(raw_text),
    )

    payload = recover_json_object(raw_text)
    document = RecoveredDocument.from_payload(payload, fallback_title=request.topic)

    if document.is_empty:
        logger.warning(
            f"No graph nodes recovered from {len(raw_text)} chars of structured output"
        )
        raise StructuredDataAbsent(
            "The structured document could not be recovered from the producer output."
        )

    log_with_context(
        logger,
        logging.INFO,
        "Structured document recovered",
        run_id=run_id,
        phase=PipelinePhase.STRUCTURE.value,
        nodes=len(document.nodes),
        links=len(document.links),
        pearls=len(document.pearls),
    )
    return document
