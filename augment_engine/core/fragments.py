"""Fragment stream events produced by the generative text service.

A stream is an ordered, finite sequence of these events. It is consumed once,
in order, by a single consumer per generation round.
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


class WebRef(BaseModel):
    """A web page the producer consulted."""

    model_config = ConfigDict(populate_by_name=True)

    uri: str = Field(..., description="Page URL")
    title: str = Field(default="", description="Page title")


class ProvenanceChunk(BaseModel):
    """One retrieved chunk; only web chunks carry a usable reference."""

    model_config = ConfigDict(populate_by_name=True)

    web: WebRef | None = None


class ProvenanceSupport(BaseModel):
    """A narrative segment backed by one or more chunks."""

    model_config = ConfigDict(populate_by_name=True)

    chunk_indices: list[int] = Field(default_factory=list, alias="groundingChunkIndices")
    segment_text: str = Field(default="", alias="segmentText")


class ProvenanceMetadata(BaseModel):
    """Structured source information attached to producer output."""

    model_config = ConfigDict(populate_by_name=True)

    chunks: list[ProvenanceChunk] = Field(default_factory=list, alias="groundingChunks")
    supports: list[ProvenanceSupport] = Field(default_factory=list, alias="groundingSupports")
    search_queries: list[str] = Field(default_factory=list, alias="webSearchQueries")


@dataclass(frozen=True)
class Narration:
    """Output text that belongs to the document being produced."""

    text: str


@dataclass(frozen=True)
class Reasoning:
    """Auxiliary reasoning text. Never part of the output."""

    text: str


@dataclass(frozen=True)
class Provenance:
    """Provenance metadata surfaced by the producer."""

    metadata: ProvenanceMetadata


Fragment = Narration | Reasoning | Provenance
