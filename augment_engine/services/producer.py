"""Generative text producer: contract and Anthropic streaming implementation.

The pipeline only depends on ``NoteProducer.stream``, which yields
``Narration``, ``Reasoning`` and ``Provenance`` fragments in order. Anything
provider-specific (content block shapes, tool definitions, error classes)
stays in this module.
"""

import base64
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic

from augment_engine.core.config import Settings
from augment_engine.core.errors import ConfigurationError, TransientProducerError
from augment_engine.core.fragments import (
    Fragment,
    Narration,
    Provenance,
    ProvenanceChunk,
    ProvenanceMetadata,
    ProvenanceSupport,
    Reasoning,
    WebRef,
)
from augment_engine.core.logging import get_logger
from augment_engine.core.schemas_note import SourceDocument

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504, 529}
REJECTED_STATUS_CODES = {401, 403}

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 8}

# Extended thinking needs room for the answer on top of the thinking budget
_MIN_ANSWER_TOKENS = 4096


@dataclass
class ProducerRequest:
    """One generation request."""

    instructions: str
    prompt: str
    documents: list[SourceDocument] = field(default_factory=list)
    enable_web_search: bool = True
    temperature: float = 0.3
    reasoning_budget: int | None = None
    max_output_tokens: int = 32000


class NoteProducer(Protocol):
    def stream(self, request: ProducerRequest) -> AsyncIterator[Fragment]: ...


ProducerFactory = Callable[[str], NoteProducer]


# =============================================================================
# Request shaping
# =============================================================================


def _document_block(document: SourceDocument) -> dict[str, Any] | None:
    mime_type = document.mime_type.lower()

    if document.data and mime_type == "application/pdf":
        return {
            "type": "document",
            "source": {"type": "base64", "media_type": mime_type, "data": document.data},
            "title": document.name,
        }

    if document.data and mime_type.startswith("image/"):
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": mime_type, "data": document.data},
        }

    text = document.text
    if text is None and document.data and mime_type.startswith("text/"):
        text = base64.b64decode(document.data).decode("utf-8", errors="replace")
    if text is None:
        logger.warning(f"Skipping unsupported document {document.name} ({mime_type})")
        return None
    return {"type": "text", "text": f"File: {document.name}\n\n{text}"}


def build_content_blocks(request: ProducerRequest) -> list[dict[str, Any]]:
    """Map source documents plus the prompt to Anthropic content blocks."""
    blocks = [block for block in map(_document_block, request.documents) if block]
    blocks.append({"type": "text", "text": request.prompt})
    return blocks


def build_message_params(request: ProducerRequest, model: str) -> dict[str, Any]:
    """Keyword arguments for ``messages.stream``."""
    params: dict[str, Any] = {
        "model": model,
        "system": request.instructions,
        "messages": [{"role": "user", "content": build_content_blocks(request)}],
        "max_tokens": request.max_output_tokens,
    }

    if request.reasoning_budget:
        # Temperature cannot be set while extended thinking is enabled
        params["thinking"] = {"type": "enabled", "budget_tokens": request.reasoning_budget}
        params["max_tokens"] = max(
            request.max_output_tokens, request.reasoning_budget + _MIN_ANSWER_TOKENS
        )
    else:
        params["temperature"] = request.temperature

    if request.enable_web_search:
        params["tools"] = [WEB_SEARCH_TOOL]

    return params


# =============================================================================
# Response mapping
# =============================================================================


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def fragment_from_event(event: Any) -> Fragment | None:
    """Map a raw stream event to a fragment, or None for bookkeeping events."""
    if _get(event, "type") != "content_block_delta":
        return None

    delta = _get(event, "delta")
    delta_type = _get(delta, "type")
    if delta_type == "text_delta":
        text = _get(delta, "text", "")
        return Narration(text) if text else None
    if delta_type == "thinking_delta":
        thinking = _get(delta, "thinking", "")
        return Reasoning(thinking) if thinking else None
    return None


def build_provenance(content: list[Any]) -> ProvenanceMetadata | None:
    """
    Collect web-search results and text citations from a final message.

    Search results become chunks; each citation on a text block becomes a
    support pointing at the chunk for its URL.
    """
    chunks: list[ProvenanceChunk] = []
    index_by_uri: dict[str, int] = {}
    supports: list[ProvenanceSupport] = []
    queries: list[str] = []

    def chunk_index(uri: str, title: str) -> int:
        if uri not in index_by_uri:
            index_by_uri[uri] = len(chunks)
            chunks.append(ProvenanceChunk(web=WebRef(uri=uri, title=title)))
        return index_by_uri[uri]

    for block in content or []:
        block_type = _get(block, "type")

        if block_type == "server_tool_use" and _get(block, "name") == "web_search":
            query = (_get(block, "input") or {}).get("query")
            if query:
                queries.append(query)

        elif block_type == "web_search_tool_result":
            results = _get(block, "content")
            # An error result carries an error object instead of a list
            if isinstance(results, list):
                for result in results:
                    url = _get(result, "url")
                    if url:
                        chunk_index(url, _get(result, "title") or "")

        elif block_type == "text":
            for citation in _get(block, "citations") or []:
                url = _get(citation, "url")
                if not url:
                    continue
                idx = chunk_index(url, _get(citation, "title") or "")
                supports.append(
                    ProvenanceSupport(
                        chunk_indices=[idx],
                        segment_text=_get(citation, "cited_text") or "",
                    )
                )

    if not chunks and not queries:
        return None
    return ProvenanceMetadata(chunks=chunks, supports=supports, search_queries=queries)


def translate_api_error(error: Exception) -> Exception:
    """Convert SDK errors into the pipeline's error taxonomy."""
    if isinstance(error, APIConnectionError):
        return TransientProducerError(f"Producer connection failed: {error}")

    if isinstance(error, APIStatusError):
        status = error.status_code
        if status in REJECTED_STATUS_CODES:
            return ConfigurationError(
                "Your API key is invalid, expired or lacks permission. Update it in settings.",
                code="rejected",
            )
        if status in TRANSIENT_STATUS_CODES:
            return TransientProducerError(f"Producer returned {status}: {error}", status_code=status)

    return error


class AnthropicProducer:
    """Streams generations from the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, client: AsyncAnthropic | None = None):
        self.client = client or AsyncAnthropic(api_key=api_key)
        self.model = model

    async def stream(self, request: ProducerRequest) -> AsyncIterator[Fragment]:
        params = build_message_params(request, self.model)
        logger.debug(
            f"Opening producer stream: model={self.model}, "
            f"thinking={bool(request.reasoning_budget)}, web_search={request.enable_web_search}"
        )

        try:
            async with self.client.messages.stream(**params) as stream:
                async for event in stream:
                    fragment = fragment_from_event(event)
                    if fragment is not None:
                        yield fragment
                final_message = await stream.get_final_message()
        except (APIConnectionError, APIStatusError) as e:
            translated = translate_api_error(e)
            if translated is e:
                raise
            raise translated from e

        provenance = build_provenance(_get(final_message, "content"))
        if provenance is not None:
            yield Provenance(provenance)


def anthropic_producer_factory(settings: Settings) -> ProducerFactory:
    """Factory building an AnthropicProducer for a validated key."""

    def build(api_key: str) -> NoteProducer:
        return AnthropicProducer(api_key=api_key, model=settings.NOTE_MODEL)

    return build
