"""
Note Assembly Pipeline

Two-phase generation of an augmented study note:
- Phase 1: structured document (title, summary, pearls, knowledge graph)
- Phase 2: long-form narrative, continued across rounds when truncated

Post-processing links graph terms in the narrative, turns JSON blocks into
tables, and derives review topics. Progress is published as typed
``PipelineEvent`` values through an ``EventChannel`` the caller iterates.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from functools import partial

from augment_engine.chains.generate_note_graph import generate_note_graph
from augment_engine.core.config import Settings, get_settings
from augment_engine.core.credentials import (
    CredentialStore,
    SettingsCredentialStore,
    validate_credential,
)
from augment_engine.core.errors import TransientProducerError
from augment_engine.core.logging import get_logger, log_with_context
from augment_engine.core.progress import (
    EventChannel,
    PipelineEvent,
    PipelineEventType,
    PipelinePhase,
    emit,
)
from augment_engine.core.retry import retry_with_backoff
from augment_engine.core.schemas_note import AugmentedNote, NoteRequest
from augment_engine.core.table_formatter import embed_tables_in_markdown
from augment_engine.core.term_linker import link_terms
from augment_engine.core.topic_cache import TopicCache
from augment_engine.services.continuation import NarrativeOrchestrator
from augment_engine.services.producer import ProducerFactory, anthropic_producer_factory

logger = get_logger(__name__)

INCOMPLETE_NARRATIVE = "Content generation incomplete."


class NoteAssembler:
    """
    Runs the full note assembly for one request at a time per call.

    Instances hold no per-run state apart from the topic cache, so concurrent
    ``generate``/``stream`` calls on one assembler are safe.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        credential_store: CredentialStore | None = None,
        producer_factory: ProducerFactory | None = None,
        topic_cache: TopicCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.credential_store = credential_store or SettingsCredentialStore(self.settings)
        self.producer_factory = producer_factory or anthropic_producer_factory(self.settings)
        self.topic_cache = (
            topic_cache
            if topic_cache is not None
            else TopicCache(max_entries=self.settings.TOPIC_CACHE_MAX_ENTRIES)
        )
        self.sleep = sleep

    def with_credential_store(self, credential_store: CredentialStore) -> "NoteAssembler":
        """Copy of this assembler reading its key from another store, sharing the topic cache."""
        return NoteAssembler(
            settings=self.settings,
            credential_store=credential_store,
            producer_factory=self.producer_factory,
            topic_cache=self.topic_cache,
            sleep=self.sleep,
        )

    async def generate(self, request: NoteRequest) -> AugmentedNote:
        """Assemble a note without progress reporting."""
        return await self._assemble(request, channel=None, run_id=str(uuid.uuid4()))

    async def stream(self, request: NoteRequest) -> AsyncIterator[PipelineEvent]:
        """
        Assemble a note, yielding progress events as they happen.

        The final event is ``COMPLETED`` carrying the note. If assembly fails,
        the events published so far are yielded and the typed error is then
        raised to the caller.
        """
        channel = EventChannel()
        run_id = str(uuid.uuid4())

        async def run() -> AugmentedNote:
            try:
                return await self._assemble(request, channel, run_id)
            finally:
                channel.close()

        task = asyncio.create_task(run())
        try:
            async for event in channel:
                yield event
            await task
        finally:
            if not task.done():
                task.cancel()

    async def _assemble(
        self,
        request: NoteRequest,
        channel: EventChannel | None,
        run_id: str,
    ) -> AugmentedNote:
        settings = self.settings

        # Credential problems must surface before any producer exists
        credential = validate_credential(
            self.credential_store.get_credential(),
            prefix=settings.CREDENTIAL_PREFIX,
            min_length=settings.CREDENTIAL_MIN_LENGTH,
        )
        producer = self.producer_factory(credential)

        log_with_context(
            logger,
            logging.INFO,
            f"Assembling note for topic {request.topic}",
            run_id=run_id,
            documents=len(request.documents),
        )

        # ======================================================================
        # Phase 1: structured document
        # ======================================================================
        document = await retry_with_backoff(
            partial(
                generate_note_graph,
                producer,
                request,
                settings,
                channel,
                run_id,
                sleep=self.sleep,
            ),
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            retry_on=(TransientProducerError,),
            sleep=self.sleep,
        )
        emit(
            channel,
            PipelineEvent(
                type=PipelineEventType.STRUCTURE_READY,
                phase=PipelinePhase.STRUCTURE,
                data={"document": document},
            ),
        )

        await self.sleep(settings.PHASE_COOLDOWN_SECONDS)

        # ======================================================================
        # Phase 2: narrative
        # ======================================================================
        orchestrator = NarrativeOrchestrator(producer, settings, sleep=self.sleep)
        outcome = await orchestrator.run(request, document, channel=channel, run_id=run_id)

        # ======================================================================
        # Post-processing
        # ======================================================================
        # JSON blocks become tables before term linking
        narrative = embed_tables_in_markdown(outcome.markdown)
        narrative = link_terms(narrative, document.nodes)
        topics = self.topic_cache.get_or_compute(narrative)

        note = AugmentedNote(
            title=document.title or request.topic,
            summary=document.summary,
            analogy=document.analogy,
            pearls=document.pearls,
            nodes=document.nodes,
            links=document.links,
            narrative=narrative or INCOMPLETE_NARRATIVE,
            sources=outcome.sources,
            topics=topics,
            source_document_names=[doc.name for doc in request.documents],
        )

        emit(
            channel,
            PipelineEvent(
                type=PipelineEventType.COMPLETED,
                phase=PipelinePhase.COMPLETE,
                data={"note": note},
            ),
        )
        log_with_context(
            logger,
            logging.INFO,
            "Note assembled",
            run_id=run_id,
            rounds=outcome.rounds,
            chars=len(note.narrative),
            sources=len(note.sources),
            topics=len(note.topics),
        )
        return note
