"""Scrape job status endpoint."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from catalog_pipeline.api.deps import get_store
from catalog_pipeline.db.store import CatalogStore

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


class ScrapeJobResponse(BaseModel):
    """Response model for a scrape job."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    manufacturer_id: int
    scrape_type: str
    status: str
    progress: Optional[Dict[str, Any]]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    error_log: Optional[str]
    products_created: int
    products_updated: int
    created_at: datetime


@router.get("/{job_id}", response_model=ScrapeJobResponse)
async def get_job(job_id: int, store: CatalogStore = Depends(get_store)):
    """Get a scrape job, including its live progress record."""
    job = await store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Scrape job not found")
    return ScrapeJobResponse.model_validate(job)
