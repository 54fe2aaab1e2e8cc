"""Pydantic schemas for structured documents, sources and assembled notes."""

from datetime import UTC, datetime
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

PearlType = Literal["gap-filler", "exam-tip", "red-flag", "fact-check"]

DEFAULT_RELATIONSHIP = "relates to"

# =======================
# Structured document
# =======================


class Pearl(BaseModel):
    """A short high-yield note attached to the document."""

    type: PearlType = Field(..., description="Pearl category")
    content: str = Field(..., min_length=1, description="Pearl text")
    citation: str | None = Field(default=None, description="Optional citation")


class GraphNode(BaseModel):
    """A labeled entity in the knowledge graph."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Stable unique identifier")
    label: str = Field(..., min_length=1, description="Display label")
    group: int = Field(default=1, ge=1, description="Category (small positive integer)")
    weight: float = Field(default=10, alias="val", description="Relative importance")
    description: str = Field(default="", description="Short summary")
    details: str | None = Field(default=None, description="Rich markdown detail")
    synonyms: list[str] = Field(default_factory=list, description="Alternative names")

    @field_validator("id", "label", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("group", mode="before")
    @classmethod
    def _clamp_group(cls, value: Any) -> Any:
        try:
            group = int(value)
        except (TypeError, ValueError):
            return 1
        return max(group, 1)

    @field_validator("synonyms", mode="before")
    @classmethod
    def _listify_synonyms(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class GraphLink(BaseModel):
    """A typed relationship between two nodes."""

    source: str = Field(..., min_length=1, description="Source node id")
    target: str = Field(..., min_length=1, description="Target node id")
    relationship: str = Field(default=DEFAULT_RELATIONSHIP, description="Relationship label")

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for end in ("source", "target"):
            value = data.get(end)
            # Graph renderers replace endpoint ids with node objects in place
            if isinstance(value, dict):
                value = value.get("id")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            data[end] = value
        data["relationship"] = data.get("relationship") or data.get("label") or DEFAULT_RELATIONSHIP
        return data


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


class RecoveredDocument(BaseModel):
    """Parsed structured object for the structured-document phase.

    Every link's endpoints reference ids present in ``nodes``; links that
    violate this are dropped on construction.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(default="", description="Document title")
    summary: str = Field(default="", description="Short summary")
    analogy: str | None = Field(default=None, alias="eli5Analogy", description="Plain analogy")
    pearls: list[Pearl] = Field(default_factory=list)
    nodes: list[GraphNode] = Field(default_factory=list, alias="graphNodes")
    links: list[GraphLink] = Field(default_factory=list, alias="graphLinks")

    @model_validator(mode="after")
    def _drop_dangling_links(self) -> "RecoveredDocument":
        node_ids = {node.id for node in self.nodes}
        self.links = [
            link for link in self.links if link.source in node_ids and link.target in node_ids
        ]
        return self

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    @classmethod
    def from_payload(cls, payload: dict[str, Any], fallback_title: str = "") -> "RecoveredDocument":
        """
        Validate a decoded payload item by item.

        Invalid pearls, nodes and links are dropped individually rather than
        failing the whole document. Duplicate node ids keep the first entry.

        Args:
            payload: Decoded object from the sanitization pipeline
            fallback_title: Title used when the payload has none

        Returns:
            RecoveredDocument (possibly empty)
        """
        if not isinstance(payload, dict):
            payload = {}

        nodes: list[GraphNode] = []
        seen_ids: set[str] = set()
        for raw in _as_list(payload.get("graphNodes", payload.get("nodes"))):
            try:
                node = GraphNode.model_validate(raw)
            except ValidationError:
                continue
            if node.id in seen_ids:
                continue
            seen_ids.add(node.id)
            nodes.append(node)

        links: list[GraphLink] = []
        for raw in _as_list(payload.get("graphLinks", payload.get("links"))):
            try:
                links.append(GraphLink.model_validate(raw))
            except ValidationError:
                continue

        pearls: list[Pearl] = []
        for raw in _as_list(payload.get("pearls")):
            try:
                pearls.append(Pearl.model_validate(raw))
            except ValidationError:
                continue

        title = payload.get("title")
        summary = payload.get("summary")
        analogy = payload.get("eli5Analogy", payload.get("analogy"))

        return cls(
            title=title if isinstance(title, str) and title.strip() else fallback_title,
            summary=summary if isinstance(summary, str) else "",
            analogy=analogy if isinstance(analogy, str) and analogy.strip() else None,
            pearls=pearls,
            nodes=nodes,
            links=links,
        )


# =======================
# Sources and topics
# =======================


class Source(BaseModel):
    """A cited source, deduplicated by uri."""

    model_config = ConfigDict(frozen=True)

    title: str
    uri: str


class QuizTopic(BaseModel):
    """A reviewable topic derived from narrative headings."""

    id: str
    name: str
    question_count: int = 3


# =======================
# Pipeline input / output
# =======================


class SourceDocument(BaseModel):
    """An uploaded document handed to the producer."""

    name: str = Field(..., description="File name")
    mime_type: str = Field(default="text/plain", description="MIME type")
    data: str | None = Field(default=None, description="Base64 payload (binary documents)")
    text: str | None = Field(default=None, description="Inline text (text documents)")

    @model_validator(mode="after")
    def _require_content(self) -> "SourceDocument":
        if not self.data and not self.text:
            raise ValueError("SourceDocument needs either data or text")
        return self


class NoteRequest(BaseModel):
    """Inputs for one note assembly."""

    topic: str = Field(default="General Topic", min_length=1, description="Topic name")
    documents: list[SourceDocument] = Field(default_factory=list)
    instructions: str | None = Field(default=None, description="Extra caller instructions")


class AugmentedNote(BaseModel):
    """Pipeline output: structured document plus linked narrative and sources."""

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    title: str
    summary: str = ""
    analogy: str | None = None
    pearls: list[Pearl] = Field(default_factory=list)
    nodes: list[GraphNode] = Field(default_factory=list)
    links: list[GraphLink] = Field(default_factory=list)
    narrative: str = ""
    sources: list[Source] = Field(default_factory=list)
    topics: list[QuizTopic] = Field(default_factory=list)
    source_document_names: list[str] = Field(default_factory=list)
