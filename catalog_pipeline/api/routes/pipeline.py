"""Manual triggers for the backlog batches."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from catalog_pipeline.api.deps import get_bus
from catalog_pipeline.worker.bus import EventBus
from catalog_pipeline.worker.events import (
    EMBEDDINGS_REQUESTED,
    NORMALIZE_REQUESTED,
    PDF_PARSE_REQUESTED,
    scope_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])

STAGE_EVENTS = {
    "normalize": NORMALIZE_REQUESTED,
    "pdf-parse": PDF_PARSE_REQUESTED,
    "embeddings": EMBEDDINGS_REQUESTED,
}


class ScopeRequest(BaseModel):
    """Optional scope; both empty means every product."""

    manufacturer_id: Optional[int] = None
    organization_id: Optional[int] = None


@router.post("/{stage}", status_code=status.HTTP_202_ACCEPTED)
async def trigger_stage(
    stage: str,
    request: Optional[ScopeRequest] = None,
    bus: EventBus = Depends(get_bus),
):
    """Queue one batch of normalize, pdf-parse or embeddings for a scope."""
    name = STAGE_EVENTS.get(stage)
    if name is None:
        raise HTTPException(status_code=404, detail=f"Unknown pipeline stage: {stage}")

    scope = request or ScopeRequest()
    await bus.send(scope_event(name, scope.manufacturer_id, scope.organization_id))
    logger.info(f"Queued {name} for {scope.model_dump()}")
    return {"queued": True, "event": name, **scope.model_dump()}
