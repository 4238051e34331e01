"""Event names and payload models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from catalog_pipeline.ingest.base import BatchCursor

SCRAPE_REQUESTED = "scrape.requested"
SCRAPE_AI_REQUESTED = "scrape_ai.requested"
NORMALIZE_REQUESTED = "normalize.requested"
PDF_PARSE_REQUESTED = "pdf_parse.requested"
EMBEDDINGS_REQUESTED = "embeddings.requested"
KNOWLEDGE_INGEST_REQUESTED = "knowledge.ingest.requested"

ALL_EVENTS = (
    SCRAPE_REQUESTED,
    SCRAPE_AI_REQUESTED,
    NORMALIZE_REQUESTED,
    PDF_PARSE_REQUESTED,
    EMBEDDINGS_REQUESTED,
    KNOWLEDGE_INGEST_REQUESTED,
)


class ScrapePayload(BaseModel):
    """Payload for scrape.requested and scrape_ai.requested."""

    manufacturer_id: int
    job_id: int


class CursorPayload(BaseModel):
    after_id: int = 0
    remaining: int = 0


class ScopePayload(BaseModel):
    """Payload for the backlog events. Both ids optional; no cursor means start over."""

    manufacturer_id: Optional[int] = None
    organization_id: Optional[int] = None
    cursor: Optional[CursorPayload] = None

    @property
    def after_id(self) -> int:
        return self.cursor.after_id if self.cursor else 0


class KnowledgeIngestPayload(BaseModel):
    """Payload for knowledge.ingest.requested."""

    organization_id: int
    source_file: str  # Local path or http(s) URL
    pillar: Optional[str] = None


class Event(BaseModel):
    """A named event as delivered by the bus.

    ``id`` is stable across redeliveries, so it doubles as the run id for
    step memoisation.
    """

    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None
    attempt: int = 1


def scope_event(
    name: str,
    manufacturer_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    cursor: Optional[BatchCursor] = None,
) -> Event:
    """Build a backlog event for a scope, optionally continuing from a cursor."""
    payload = ScopePayload(
        manufacturer_id=manufacturer_id,
        organization_id=organization_id,
        cursor=CursorPayload(**cursor.to_dict()) if cursor else None,
    )
    return Event(name=name, data=payload.model_dump(exclude_none=True))
