"""Note assembly API with SSE streaming.

Provides endpoints for generating an augmented study note from uploaded
documents, either as a stream of progress events or as one JSON response.
"""

import json
from functools import lru_cache
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from augment_engine.core.credentials import StaticCredentialStore
from augment_engine.core.errors import (
    ConfigurationError,
    EmptyOutputError,
    NoteAssemblyError,
    StructuredDataAbsent,
    TransientProducerError,
)
from augment_engine.core.logging import get_logger
from augment_engine.core.schemas_note import AugmentedNote, NoteRequest, SourceDocument
from augment_engine.services.note_pipeline import NoteAssembler

logger = get_logger(__name__)

router = APIRouter()


class NoteGenerationRequest(BaseModel):
    """Request body for note generation."""

    topic: str = Field(default="General Topic", min_length=1)
    documents: list[SourceDocument] = Field(default_factory=list)
    instructions: str | None = None
    api_key: str | None = Field(
        default=None, description="Caller-supplied key; falls back to server settings"
    )

    def to_note_request(self) -> NoteRequest:
        return NoteRequest(
            topic=self.topic,
            documents=self.documents,
            instructions=self.instructions,
        )


@lru_cache
def get_assembler() -> NoteAssembler:
    """Process-wide assembler so the topic cache is shared across requests."""
    return NoteAssembler()


def _resolve_assembler(body: NoteGenerationRequest, assembler: NoteAssembler) -> NoteAssembler:
    if body.api_key is not None:
        return assembler.with_credential_store(StaticCredentialStore(body.api_key))
    return assembler


def _error_payload(error: Exception) -> dict:
    if isinstance(error, NoteAssemblyError):
        return {"type": "error", "code": error.code, "message": str(error)}
    return {"type": "error", "code": "internal_error", "message": str(error)}


def _status_for(error: NoteAssemblyError) -> int:
    if isinstance(error, ConfigurationError):
        return 401 if error.code == "rejected" else 400
    if isinstance(error, TransientProducerError):
        return 503
    if isinstance(error, (EmptyOutputError, StructuredDataAbsent)):
        return 502
    return 500


@router.post("/notes/stream")
async def stream_note(
    body: NoteGenerationRequest,
    assembler: NoteAssembler = Depends(get_assembler),
) -> StreamingResponse:
    """
    Generate a note, streaming progress as Server-Sent Events.

    SSE Event Types:
    - stage_changed, reasoning, structure_ready, narrative_delta,
      continuation_started: progress events
    - completed: final event, carries the note
    - error: assembly failed, carries the error code

    Args:
        body: Topic, documents and optional caller key

    Returns:
        StreamingResponse with Server-Sent Events
    """
    note_assembler = _resolve_assembler(body, assembler)
    note_request = body.to_note_request()

    async def generate() -> AsyncGenerator[str, None]:
        try:
            async for event in note_assembler.stream(note_request):
                yield f"data: {json.dumps(event.to_dict())}\n\n"
        except NoteAssemblyError as e:
            logger.warning(f"Note assembly failed ({e.code}): {e}")
            yield f"data: {json.dumps(_error_payload(e))}\n\n"
        except Exception as e:
            logger.error(f"Error in note stream: {e}", exc_info=True)
            yield f"data: {json.dumps(_error_payload(e))}\n\n"

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.post("/notes", response_model=AugmentedNote)
async def create_note(
    body: NoteGenerationRequest,
    assembler: NoteAssembler = Depends(get_assembler),
) -> AugmentedNote:
    """Generate a note and return it in one response."""
    note_assembler = _resolve_assembler(body, assembler)
    try:
        return await note_assembler.generate(body.to_note_request())
    except NoteAssemblyError as e:
        logger.warning(f"Note assembly failed ({e.code}): {e}")
        raise HTTPException(
            status_code=_status_for(e),
            detail={"code": e.code, "message": str(e)},
        ) from e
