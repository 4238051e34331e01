"""API process: HTTP entry points plus the in-process event worker."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from catalog_pipeline.api.routes import jobs, knowledge, manufacturers, pipeline
from catalog_pipeline.config import settings
from catalog_pipeline.db.models import Base
from catalog_pipeline.db.session import AsyncSessionLocal, engine
from catalog_pipeline.db.store import SqlCatalogStore
from catalog_pipeline.logging_config import setup_logging
from catalog_pipeline.worker.scheduler import setup_scheduler
from catalog_pipeline.worker.steps import create_step_store
from catalog_pipeline.worker.tasks import PipelineDeps, build_bus

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, then run the event bus and backlog scheduler alongside the API."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = SqlCatalogStore(AsyncSessionLocal)
    deps = PipelineDeps.create(store)
    step_store = create_step_store()
    bus = build_bus(deps, step_store=step_store)
    await bus.start()
    app.state.store = store
    app.state.bus = bus

    scheduler = setup_scheduler(bus)
    scheduler.start()
    logger.info(f"Catalog pipeline started (step store: {settings.step_store_backend})")

    try:
        yield
    finally:
        logger.info("Shutting down catalog pipeline...")
        scheduler.shutdown(wait=False)
        await bus.stop()
        await step_store.close()
        await deps.close()
        await engine.dispose()
        logger.info("Shutdown complete")


app = FastAPI(
    title="Catalog Pipeline",
    description="Ingest manufacturer catalogues into a normalized product store",
    version="0.1.0",
    lifespan=lifespan,
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health"],
).instrument(app).expose(app, include_in_schema=False)

app.include_router(manufacturers.router)
app.include_router(jobs.router)
app.include_router(pipeline.router)
app.include_router(knowledge.router)


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "catalog_pipeline.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
