"""Normalized item model, the canonical shape every adapter emits.

Adapters convert provider payloads INTO ``StandardIngestItem``; the item
processor and the ingestion pipeline only ever see this shape.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from tributary.models.enums import IngestItemType, IntegrationProvider, Priority


# ---------------------------------------------------------------------------
# Provider-specific details (tagged union on ``kind``)
# ---------------------------------------------------------------------------


class HighlightDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["highlight"] = "highlight"
    book_id: str | None = None
    book_title: str | None = None
    location: int | None = None
    location_type: str | None = None
    color: str | None = None
    note: str | None = None


class ArticleDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["article"] = "article"
    category: str | None = None
    source: str | None = None
    num_highlights: int | None = None
    cover_image_url: str | None = None


class MeetingDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["meeting"] = "meeting"
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_minutes: int | None = None
    participants: list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)
    has_transcript: bool = False


class CodeEventDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["code_event"] = "code_event"
    repository: str
    event: str
    action: str | None = None
    number: int | None = None
    state: str | None = None
    ref: str | None = None


class PaymentEventDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["payment_event"] = "payment_event"
    event_type: str
    account_id: str | None = None
    object_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    livemode: bool = False


class GenericDetails(BaseModel):
    """Open fallback for providers without a well-known details shape."""

    model_config = ConfigDict(extra="allow")

    kind: Literal["generic"] = "generic"


ItemDetails = Annotated[
    HighlightDetails
    | ArticleDetails
    | MeetingDetails
    | CodeEventDetails
    | PaymentEventDetails
    | GenericDetails,
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Standard item
# ---------------------------------------------------------------------------


class IngestItemMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timestamp: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None
    author: str | None = None
    author_email: str | None = None
    author_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    parent_id: str | None = None
    thread_id: str | None = None
    project_id: str | None = None
    conversation_id: str | None = None
    details: ItemDetails | None = None


class ProcessingHints(BaseModel):
    model_config = ConfigDict(extra="forbid")

    extract_tasks: bool = False
    extract_memories: bool = False
    link_to_project: str | None = None
    priority: Priority | None = None


class StandardIngestItem(BaseModel):
    """Provider-agnostic item produced by ``ProviderAdapter.sync`` and ``handle_webhook``.

    ``source_id`` is stable across pull and webhook paths for the same
    upstream record, so both converge on one ingested row.
    """

    model_config = ConfigDict(extra="forbid")

    source_provider: IntegrationProvider
    source_id: str = Field(..., min_length=1, max_length=512)
    source_url: str | None = None
    type: IngestItemType
    title: str | None = None
    content: str = ""
    summary: str | None = None
    raw_content: dict[str, Any] | None = None  # Original payload for traceability
    metadata: IngestItemMetadata
    processing_hints: ProcessingHints = Field(default_factory=ProcessingHints)
