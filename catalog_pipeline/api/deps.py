"""FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from catalog_pipeline.db.store import CatalogStore
from catalog_pipeline.worker.bus import EventBus


def get_store(request: Request) -> CatalogStore:
    """Dependency for the catalog store created at startup."""
    return request.app.state.store


def get_bus(request: Request) -> EventBus:
    """
    Dependency for the event bus.

    Raises:
        HTTPException: 503 if the worker bus is not running
    """
    bus = getattr(request.app.state, "bus", None)
    if bus is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event bus not running",
        )
    return bus
