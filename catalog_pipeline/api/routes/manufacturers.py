"""Manufacturer scrape and spreadsheet import endpoints."""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from catalog_pipeline.api.deps import get_bus, get_store
from catalog_pipeline.db.store import CatalogStore
from catalog_pipeline.errors import SpreadsheetError
from catalog_pipeline.ingest.spreadsheet_import import SpreadsheetImporter, read_sheet
from catalog_pipeline.worker.bus import EventBus
from catalog_pipeline.worker.events import EMBEDDINGS_REQUESTED, NORMALIZE_REQUESTED, scope_event
from catalog_pipeline.worker.tasks import scrape_event_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/manufacturers", tags=["manufacturers"])


async def _get_manufacturer_or_404(store: CatalogStore, manufacturer_id: int):
    manufacturer = await store.get_manufacturer(manufacturer_id)
    if not manufacturer:
        raise HTTPException(status_code=404, detail="Manufacturer not found")
    return manufacturer


@router.post("/{manufacturer_id}/scrape", status_code=status.HTTP_202_ACCEPTED)
async def trigger_scrape(
    manufacturer_id: int,
    store: CatalogStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
):
    """
    Queue a scrape for a manufacturer.

    A manufacturer with a configured product list gets the structured
    scraper; everything else goes through AI discovery. Poll
    ``GET /api/jobs/{job_id}`` for progress.
    """
    manufacturer = await _get_manufacturer_or_404(store, manufacturer_id)
    job = await store.create_job(manufacturer.id)
    event = scrape_event_for(manufacturer, job.id)
    await bus.send(event)

    logger.info(f"Queued {event.name} for manufacturer {manufacturer.id} (job {job.id})")
    return {"job_id": job.id, "status": job.status, "event": event.name}


@router.post("/{manufacturer_id}/import")
async def import_spreadsheet(
    manufacturer_id: int,
    request: Request,
    filename: str = Query(..., description="Original file name; .csv or .xlsx"),
    mapping: Optional[str] = Query(None, description="JSON object of column -> field"),
    dry_run: bool = False,
    store: CatalogStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
) -> Dict[str, Any]:
    """
    Preview or import a product spreadsheet sent as the raw request body.

    Without ``mapping`` (or with ``dry_run``) the sheet is only previewed.
    """
    manufacturer = await _get_manufacturer_or_404(store, manufacturer_id)
    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail="No file provided")

    importer = SpreadsheetImporter(store)
    try:
        sheet = read_sheet(body, filename)
        if not mapping or dry_run:
            return await importer.preview(manufacturer, sheet)

        try:
            column_mapping = json.loads(mapping)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid mapping JSON")
        if not isinstance(column_mapping, dict):
            raise HTTPException(status_code=400, detail="Invalid mapping JSON")

        report = await importer.import_rows(manufacturer, sheet, column_mapping, filename)
    except SpreadsheetError as e:
        raise HTTPException(status_code=400, detail=str(e))

    scope = {"manufacturer_id": manufacturer.id, "organization_id": manufacturer.organization_id}
    await bus.send(scope_event(NORMALIZE_REQUESTED, **scope))
    await bus.send(scope_event(EMBEDDINGS_REQUESTED, **scope))

    errors = report.error_lines()
    return {
        "imported": True,
        "created": report.created,
        "updated": report.updated,
        "total_rows": len(sheet.rows),
        "errors": errors or None,
    }
