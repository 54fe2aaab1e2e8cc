"""Progress telemetry for note assembly.

Stage tracking here is best-effort reporting only: nothing in the pipeline
branches on it. Events flow to the caller through an ``EventChannel`` the
caller iterates, so the core never calls back into caller code.

Structured phase:
  EXTRACTING → VERIFYING → GRAPHING
Narrative phase:
  STRUCTURING → WRITING → CITING → DONE
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel


class PipelinePhase(str, Enum):
    STRUCTURE = "structure"
    NARRATIVE = "narrative"
    COMPLETE = "complete"


class StructureStage(str, Enum):
    EXTRACTING = "extracting"
    VERIFYING = "verifying"
    GRAPHING = "graphing"


class NarrativeStage(str, Enum):
    STRUCTURING = "structuring"
    WRITING = "writing"
    CITING = "citing"
    DONE = "done"


class PipelineEventType(str, Enum):
    STAGE_CHANGED = "stage_changed"
    REASONING = "reasoning"
    STRUCTURE_READY = "structure_ready"
    NARRATIVE_DELTA = "narrative_delta"
    CONTINUATION_STARTED = "continuation_started"
    COMPLETED = "completed"


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class PipelineEvent:
    """One progress event. ``data`` may hold pydantic models."""

    type: PipelineEventType
    phase: PipelinePhase
    stage: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "phase": self.phase.value,
            "stage": self.stage,
            "data": _jsonable(self.data),
        }


class EventChannel:
    """Unbounded queue of pipeline events, consumed with ``async for``."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()
        self._closed = False

    def publish(self, event: PipelineEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


def emit(channel: EventChannel | None, event: PipelineEvent) -> None:
    if channel is not None:
        channel.publish(event)


# =============================================================================
# Structured phase
# =============================================================================

_VERIFY_KEYWORDS = ("search", "google", "verify", "cross-reference", "looking up")
_GRAPH_KEYWORDS = ("graph", "node", "link", "constellation", "json")
GRAPH_MARKER = '"graphNodes"'

_STRUCTURE_ORDER = list(StructureStage)


class StructureStageTracker:
    """Forward-only stage tracker for the structured-document round."""

    def __init__(self) -> None:
        self.stage = StructureStage.EXTRACTING

    def _advance(self, target: StructureStage) -> list[StructureStage]:
        if _STRUCTURE_ORDER.index(target) <= _STRUCTURE_ORDER.index(self.stage):
            return []
        self.stage = target
        return [target]

    def on_reasoning(self, text: str) -> list[StructureStage]:
        lowered = text.lower()
        transitions: list[StructureStage] = []
        if any(keyword in lowered for keyword in _VERIFY_KEYWORDS):
            transitions += self._advance(StructureStage.VERIFYING)
        if any(keyword in lowered for keyword in _GRAPH_KEYWORDS):
            transitions += self._advance(StructureStage.GRAPHING)
        return transitions

    def on_narration(self, recent_text: str) -> list[StructureStage]:
        if GRAPH_MARKER in recent_text:
            return self._advance(StructureStage.GRAPHING)
        return []

    def on_provenance(self) -> list[StructureStage]:
        return self._advance(StructureStage.VERIFYING)


# =============================================================================
# Narrative phase
# =============================================================================

WRITING_THRESHOLD = 500
CITING_THRESHOLD = 30_000


class NarrativeStageTracker:
    """Length-driven stage tracker for narrative assembly. One step per update."""

    def __init__(self) -> None:
        self.stage = NarrativeStage.STRUCTURING

    def on_length(self, length: int) -> NarrativeStage | None:
        if self.stage is NarrativeStage.STRUCTURING and length > WRITING_THRESHOLD:
            self.stage = NarrativeStage.WRITING
            return self.stage
        if self.stage is NarrativeStage.WRITING and length > CITING_THRESHOLD:
            self.stage = NarrativeStage.CITING
            return self.stage
        return None

    def finish(self) -> NarrativeStage | None:
        if self.stage is NarrativeStage.DONE:
            return None
        self.stage = NarrativeStage.DONE
        return self.stage
