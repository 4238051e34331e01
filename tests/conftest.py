"""Shared fixtures: a SQLite-backed catalog store and row factories."""

from typing import Any, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalog_pipeline.db.models import Base, Manufacturer, PillarSchema, Product
from catalog_pipeline.db.store import SqlCatalogStore
from catalog_pipeline.normalize.schema import PillarSchemaSpec
from catalog_pipeline.worker.bus import RecordingEventBus
from catalog_pipeline.worker.steps import MemoryStepStore, StepContext
from catalog_pipeline.worker.tasks import PipelineDeps
from tests.fakes import FakeEmbedding, FakeFetcher, ScriptedExtraction, no_sleep


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlCatalogStore:
    return SqlCatalogStore(session_factory)


@pytest.fixture
def make_manufacturer(session_factory):
    async def factory(
        name: str = "Quelfire",
        website_url: Optional[str] = "https://quelfire.example",
        organization_id: int = 1,
        scraper_config: Optional[dict] = None,
        default_pillar: Optional[str] = None,
    ) -> Manufacturer:
        manufacturer = Manufacturer(
            name=name,
            website_url=website_url,
            organization_id=organization_id,
            scraper_config=scraper_config,
            default_pillar=default_pillar,
        )
        async with session_factory() as db:
            db.add(manufacturer)
            await db.commit()
            await db.refresh(manufacturer)
        return manufacturer

    return factory


@pytest.fixture
def make_products(session_factory):
    """Bulk-insert products for a manufacturer in one transaction."""

    async def factory(manufacturer: Manufacturer, count: int, **fields: Any) -> list[Product]:
        products = [
            Product(
                manufacturer_id=manufacturer.id,
                organization_id=manufacturer.organization_id,
                pillar=fields.get("pillar", "fire_stopping"),
                product_code=f"{fields.get('prefix', 'P')}-{index:04d}",
                product_name=f"Product {index}",
                description=fields.get("description", f"Intumescent sealant number {index}"),
                specifications=dict(fields.get("specifications", {})),
                needs_review=True,
                status="draft",
            )
            for index in range(count)
        ]
        async with session_factory() as db:
            db.add_all(products)
            await db.commit()
            for product in products:
                await db.refresh(product)
        return products

    return factory


@pytest.fixture
def make_schema(session_factory):
    async def factory(spec: PillarSchemaSpec) -> None:
        async with session_factory() as db:
            db.add(
                PillarSchema(
                    pillar=spec.pillar,
                    display_name=spec.display_name,
                    field_definitions=spec.field_definitions(),
                    required_fields=spec.required_fields,
                )
            )
            await db.commit()

    return factory


@pytest.fixture
def fire_stopping_schema() -> PillarSchemaSpec:
    return PillarSchemaSpec.from_definitions(
        "fire_stopping",
        "Fire Stopping",
        {
            "fire_rating_minutes": {"type": "number", "label": "Fire rating (minutes)"},
            "penetration_type": {"type": "text", "label": "Penetration type"},
            "installation_method": {
                "type": "text",
                "label": "Installation method",
                "options": ["Trowel applied", "Push-fit", "Gun applied"],
            },
        },
        ["fire_rating_minutes", "penetration_type"],
    )


@pytest.fixture
def recording_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def step(recording_bus) -> StepContext:
    return StepContext("run-1", MemoryStepStore(), recording_bus, sleep=no_sleep)


@pytest.fixture
def pipeline_deps(store) -> PipelineDeps:
    """Pipeline wiring with every network-facing service faked out."""
    return PipelineDeps.create(
        store,
        fetcher=FakeFetcher(),
        extraction=ScriptedExtraction(),
        embedding=FakeEmbedding(),
        sleep=no_sleep,
    )
