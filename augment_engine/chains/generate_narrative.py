"""Narrative round: long-form markdown study guide, one producer call.

A round starts from the previous buffer (empty on round 0) and appends the
narration it receives. The continuation orchestrator decides whether another
round is needed.
"""

# ruff: noqa: E501

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from augment_engine.core.config import Settings
from augment_engine.core.errors import EmptyOutputError
from augment_engine.core.fragments import Narration, Provenance, ProvenanceMetadata, Reasoning
from augment_engine.core.logging import get_logger, log_with_context
from augment_engine.core.narrative_cleanup import remove_redundant_sections
from augment_engine.core.progress import (
    EventChannel,
    NarrativeStageTracker,
    PipelineEvent,
    PipelineEventType,
    PipelinePhase,
    emit,
)
from augment_engine.core.schemas_note import NoteRequest, RecoveredDocument
from augment_engine.core.truncation import MIN_SIGNAL_LENGTH
from augment_engine.services.producer import NoteProducer, ProducerRequest

logger = get_logger(__name__)

# Tail of the previous buffer shown to the producer on continuation rounds
PREVIOUS_TAIL_CHARS = 4000

# Node labels listed in the prompt so the narrative uses linkable terms
MAX_PROMPT_TERMS = 60


SYSTEM_PROMPT = """You are an expert educator writing a comprehensive markdown study guide.

Write in GitHub-flavored markdown. Start with a single H1 title, then organize the guide into numbered H2 sections with H3 subsections.

Content rules:
- Ground the guide in the uploaded material. Use web search to fill gaps and verify numbers, criteria and current guidance.
- Cite inline, e.g. (Smith et al., 2023) or (WHO, 2022).
- Mention the knowledge-graph terms listed in the request naturally, by their exact names.
- For comparisons, emit a ```json fenced block holding an array of objects instead of a markdown table.
- Do not add a pearls section or a references section. Both are handled separately.
- End cleanly after your final section.
"""

CONTINUATION_INSTRUCTIONS = """CONTINUATION MODE

The guide was cut off. Pick up exactly where the previous output stopped, starting from the section "{section}".
- Complete the remaining sections only.
- Do not repeat any heading or paragraph that already exists.
- If the output stopped inside a table or code block, finish it first.
"""


@dataclass
class NarrativeRoundResult:
    """Buffer after one round plus the latest provenance it surfaced."""

    markdown: str
    provenance: ProvenanceMetadata | None = None


def build_narrative_prompt(
    request: NoteRequest,
    document: RecoveredDocument,
    previous_buffer: str = "",
    resume_marker: str | None = None,
) -> str:
    terms = [node.label for node in document.nodes[:MAX_PROMPT_TERMS]]

    if previous_buffer:
        section = resume_marker or "the last complete paragraph"
        return "\n\n".join(
            [
                f'Continue the markdown study guide for "{request.topic}" from section "{section}".',
                "Do not repeat previous content. End cleanly after your final section.",
                f"The previous output ended with:\n\n{previous_buffer[-PREVIOUS_TAIL_CHARS:]}",
            ]
        )

    lines = [f'Write the comprehensive markdown study guide for "{request.topic}".']
    if document.summary:
        lines.append(f"Summary for coherence: {document.summary}")
    if document.pearls:
        lines.append(f"{len(document.pearls)} pearls are already captured separately.")
    if terms:
        lines.append("Knowledge-graph terms to mention: " + ", ".join(terms))
    if request.instructions:
        lines.append(f"Additional instructions from the learner:\n{request.instructions}")
    return "\n\n".join(lines)


async def _consume_round(
    producer: NoteProducer,
    producer_request: ProducerRequest,
    previous_buffer: str,
    tracker: NarrativeStageTracker,
    channel: EventChannel | None,
) -> NarrativeRoundResult:
    buffer = previous_buffer
    provenance: ProvenanceMetadata | None = None
    event_count = 0

    async for fragment in producer.stream(producer_request):
        event_count += 1

        if isinstance(fragment, Narration):
            buffer += fragment.text
            emit(
                channel,
                PipelineEvent(
                    type=PipelineEventType.NARRATIVE_DELTA,
                    phase=PipelinePhase.NARRATIVE,
                    stage=tracker.stage.value,
                    data={"text": fragment.text, "length": len(buffer)},
                ),
            )
            stage = tracker.on_length(len(buffer))
            if stage is not None:
                emit(
                    channel,
                    PipelineEvent(
                        type=PipelineEventType.STAGE_CHANGED,
                        phase=PipelinePhase.NARRATIVE,
                        stage=stage.value,
                    ),
                )
        elif isinstance(fragment, Reasoning):
            emit(
                channel,
                PipelineEvent(
                    type=PipelineEventType.REASONING,
                    phase=PipelinePhase.NARRATIVE,
                    stage=tracker.stage.value,
                    data={"text": fragment.text},
                ),
            )
        elif isinstance(fragment, Provenance):
            # Latest provenance wins
            provenance = fragment.metadata

    if event_count == 0:
        raise EmptyOutputError(
            "The producer returned an empty stream for the narrative.",
            code="empty_stream",
        )
    if len(buffer) < MIN_SIGNAL_LENGTH:
        raise EmptyOutputError(
            "Content generation incomplete. The producer returned minimal output.",
            code="empty_content",
            char_count=len(buffer),
        )

    return NarrativeRoundResult(markdown=buffer, provenance=provenance)


async def generate_narrative_round(
    producer: NoteProducer,
    request: NoteRequest,
    document: RecoveredDocument,
    settings: Settings,
    *,
    previous_buffer: str = "",
    resume_marker: str | None = None,
    tracker: NarrativeStageTracker | None = None,
    channel: EventChannel | None = None,
    run_id: str | None = None,
    round_number: int = 0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> NarrativeRoundResult:
    """
    Run one narrative round on top of ``previous_buffer``.

    An empty stream, or a buffer still under the minimum signal length, gets a
    single in-round retry after a cool-down. The retry restarts from
    ``previous_buffer`` so nothing from the failed attempt is duplicated, and
    runs without extended thinking.

    Raises:
        EmptyOutputError: The retry came back empty as well
        TransientProducerError: Propagated for the retry executor
    """
    tracker = tracker or NarrativeStageTracker()
    instructions = SYSTEM_PROMPT
    if previous_buffer:
        instructions += "\n" + CONTINUATION_INSTRUCTIONS.format(
            section=resume_marker or "the last complete paragraph"
        )

    producer_request = ProducerRequest(
        instructions=instructions,
        prompt=build_narrative_prompt(request, document, previous_buffer, resume_marker),
        documents=request.documents,
        enable_web_search=settings.WEB_SEARCH_ENABLED,
        temperature=settings.GENERATION_TEMPERATURE,
        reasoning_budget=settings.NARRATIVE_REASONING_BUDGET,
        max_output_tokens=settings.NARRATIVE_MAX_TOKENS,
    )

    try:
        result = await _consume_round(producer, producer_request, previous_buffer, tracker, channel)
    except EmptyOutputError as e:
        log_with_context(
            logger,
            logging.WARNING,
            f"Empty narrative output ({e.code}), retrying once without extended thinking",
            run_id=run_id,
            phase=PipelinePhase.NARRATIVE.value,
            round=round_number,
            cooldown=settings.EMPTY_OUTPUT_COOLDOWN_SECONDS,
        )
        await sleep(settings.EMPTY_OUTPUT_COOLDOWN_SECONDS)

        retry_request = dataclasses.replace(producer_request, reasoning_budget=None)
        try:
            result = await _consume_round(
                producer, retry_request, previous_buffer, tracker, channel
            )
        except EmptyOutputError as retry_error:
            raise EmptyOutputError(
                "The producer output stayed empty after a retry. Please try again.",
                code=retry_error.code,
                char_count=retry_error.char_count,
            ) from e

    markdown = remove_redundant_sections(result.markdown)
    log_with_context(
        logger,
        logging.INFO,
        "Narrative round finished",
        run_id=run_id,
        phase=PipelinePhase.NARRATIVE.value,
        round=round_number,
        chars=len(markdown),
        appended=len(result.markdown) - len(previous_buffer),
        has_provenance=result.provenance is not None,
    )
    return NarrativeRoundResult(markdown=markdown, provenance=result.provenance)
