"""Continuation orchestrator for narrative assembly.

Drives a bounded sequence of narrative rounds. Each round is seeded with the
accumulated buffer and the last heading seen, and stops as soon as the
truncation detector reports completion, a round adds nothing, or the buffer
passes the hard cap. Running out of rounds is not an error: partial output is
returned as-is.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial

from augment_engine.chains.generate_narrative import generate_narrative_round
from augment_engine.core.citations import dedupe_sources, extract_sources
from augment_engine.core.config import Settings
from augment_engine.core.errors import TransientProducerError
from augment_engine.core.logging import get_logger, log_with_context
from augment_engine.core.progress import (
    EventChannel,
    NarrativeStageTracker,
    PipelineEvent,
    PipelineEventType,
    PipelinePhase,
    emit,
)
from augment_engine.core.retry import retry_with_backoff
from augment_engine.core.schemas_note import NoteRequest, RecoveredDocument, Source
from augment_engine.core.truncation import detect_truncation
from augment_engine.services.producer import NoteProducer

logger = get_logger(__name__)


@dataclass
class ContinuationState:
    """Accumulated buffer, round counter and last known section."""

    buffer: str = ""
    attempt: int = 0
    last_section: str | None = None


@dataclass
class NarrativeOutcome:
    markdown: str
    sources: list[Source] = field(default_factory=list)
    rounds: int = 0


class NarrativeOrchestrator:
    """Runs narrative rounds until the buffer looks complete or a limit is hit."""

    def __init__(
        self,
        producer: NoteProducer,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.producer = producer
        self.settings = settings
        self.sleep = sleep

    async def run(
        self,
        request: NoteRequest,
        document: RecoveredDocument,
        channel: EventChannel | None = None,
        run_id: str | None = None,
    ) -> NarrativeOutcome:
        """
        Assemble the narrative across 1..MAX_CONTINUATIONS + 1 rounds.

        Args:
            request: Pipeline inputs, re-sent on every round
            document: Structured document from the first phase
            channel: Optional progress channel
            run_id: Run identifier for log lines

        Returns:
            NarrativeOutcome with the final buffer and deduplicated sources
        """
        settings = self.settings
        state = ContinuationState()
        tracker = NarrativeStageTracker()
        sources: list[Source] = []

        emit(
            channel,
            PipelineEvent(
                type=PipelineEventType.STAGE_CHANGED,
                phase=PipelinePhase.NARRATIVE,
                stage=tracker.stage.value,
            ),
        )

        while True:
            previous_length = len(state.buffer)
            operation = partial(
                generate_narrative_round,
                self.producer,
                request,
                document,
                settings,
                previous_buffer=state.buffer,
                resume_marker=state.last_section,
                tracker=tracker,
                channel=channel,
                run_id=run_id,
                round_number=state.attempt,
                sleep=self.sleep,
            )
            result = await retry_with_backoff(
                operation,
                max_attempts=settings.RETRY_MAX_ATTEMPTS,
                base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                retry_on=(TransientProducerError,),
                sleep=self.sleep,
            )

            state.buffer = result.markdown
            sources = dedupe_sources(sources + extract_sources(result.provenance, state.buffer))

            check = detect_truncation(state.buffer)
            state.last_section = check.resume_marker

            if not check.is_truncated:
                break
            if len(state.buffer) == previous_length:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Continuation round added nothing, stopping",
                    run_id=run_id,
                    round=state.attempt,
                )
                break
            if len(state.buffer) > settings.NARRATIVE_HARD_CAP:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Narrative passed the hard length cap, stopping",
                    run_id=run_id,
                    round=state.attempt,
                    chars=len(state.buffer),
                )
                break
            if state.attempt >= settings.MAX_CONTINUATIONS:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Continuation rounds exhausted, returning partial narrative",
                    run_id=run_id,
                    round=state.attempt,
                    chars=len(state.buffer),
                )
                break

            state.attempt += 1
            log_with_context(
                logger,
                logging.INFO,
                f"Truncation detected, continuing from {state.last_section or 'end of buffer'}",
                run_id=run_id,
                round=state.attempt,
                chars=len(state.buffer),
            )
            emit(
                channel,
                PipelineEvent(
                    type=PipelineEventType.CONTINUATION_STARTED,
                    phase=PipelinePhase.NARRATIVE,
                    stage=tracker.stage.value,
                    data={
                        "round": state.attempt,
                        "max_rounds": settings.MAX_CONTINUATIONS,
                        "resume_marker": state.last_section,
                    },
                ),
            )

        done = tracker.finish()
        if done is not None:
            emit(
                channel,
                PipelineEvent(
                    type=PipelineEventType.STAGE_CHANGED,
                    phase=PipelinePhase.NARRATIVE,
                    stage=done.value,
                ),
            )

        return NarrativeOutcome(markdown=state.buffer, sources=sources, rounds=state.attempt + 1)
