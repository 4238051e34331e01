"""Knowledge-base ingestion endpoint."""

from fastapi import APIRouter, Depends, status

from catalog_pipeline.api.deps import get_bus
from catalog_pipeline.worker.bus import EventBus
from catalog_pipeline.worker.events import KNOWLEDGE_INGEST_REQUESTED, Event, KnowledgeIngestPayload

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])


@router.post("/ingest", status_code=status.HTTP_202_ACCEPTED)
async def ingest_document(request: KnowledgeIngestPayload, bus: EventBus = Depends(get_bus)):
    """Queue a source document for chunking and embedding as a new generation."""
    await bus.send(Event(name=KNOWLEDGE_INGEST_REQUESTED, data=request.model_dump()))
    return {"queued": True, "source_file": request.source_file}
