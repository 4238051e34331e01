"""Tests for batched, self-continuing normalization."""

import pytest

from catalog_pipeline.ai.prompts import FieldExtraction
from catalog_pipeline.db.store import Scope
from catalog_pipeline.errors import ExtractionError
from catalog_pipeline.ingest.base import BatchCursor
from catalog_pipeline.normalize.processor import ProductNormalizer
from catalog_pipeline.worker.events import NORMALIZE_REQUESTED, scope_event
from catalog_pipeline.worker.tasks import build_bus, drain, handle_normalize
from tests.fakes import ScriptedExtraction, no_sleep


def _fire_rating_fields(raw_text: str) -> FieldExtraction:
    return FieldExtraction(
        specifications={"fire_rating_minutes": 120, "penetration_type": "Cables", "colour": "Red"},
        confidence=92,
        warnings=["installation_method not found in source data"],
    )


@pytest.mark.asyncio
async def test_normalize_product_writes_validated_specifications(
    store, make_manufacturer, make_products, make_schema, fire_stopping_schema
):
    await make_schema(fire_stopping_schema)
    manufacturer = await make_manufacturer()
    (product,) = await make_products(manufacturer, 1, specifications={"manual_note": "keep me"})
    normalizer = ProductNormalizer(
        store, extraction=ScriptedExtraction(fields=_fire_rating_fields), sleep=no_sleep
    )

    report = await normalizer.run_batch(Scope(manufacturer_id=manufacturer.id))

    assert report.count("normalized") == 1
    assert report.continuation is None

    stored = await store.get_product(product.id)
    assert stored.normalized_at is not None
    assert stored.normalization_confidence == 92
    assert stored.specifications == {
        "manual_note": "keep me",
        "colour": "Red",
        "fire_rating_minutes": 120,
        "penetration_type": "Cables",
    }
    assert stored.normalization_warnings == [
        "installation_method not found in source data",
        'Unknown field "colour" — not in Fire Stopping schema',
    ]


@pytest.mark.asyncio
async def test_250_products_take_exactly_three_invocations(
    store, make_manufacturer, make_products, make_schema, fire_stopping_schema
):
    await make_schema(fire_stopping_schema)
    manufacturer = await make_manufacturer()
    await make_products(manufacturer, 250)
    extraction = ScriptedExtraction()
    normalizer = ProductNormalizer(store, extraction=extraction, batch_size=100, sleep=no_sleep)

    reports = await drain(normalizer.run_batch, Scope(manufacturer_id=manufacturer.id))

    assert [report.total for report in reports] == [100, 100, 50]
    assert [report.continuation.remaining for report in reports[:2]] == [150, 50]
    assert len(extraction.field_calls) == 250
    assert await store.count_unnormalized_products(Scope(manufacturer_id=manufacturer.id)) == 0


@pytest.mark.asyncio
async def test_missing_schema_fails_the_product_and_still_terminates(
    store, make_manufacturer, make_products, make_schema, fire_stopping_schema
):
    await make_schema(fire_stopping_schema)
    manufacturer = await make_manufacturer()
    await make_products(manufacturer, 3, pillar="dampers", prefix="D")
    await make_products(manufacturer, 2)
    normalizer = ProductNormalizer(
        store, extraction=ScriptedExtraction(), batch_size=2, sleep=no_sleep
    )

    reports = await drain(normalizer.run_batch, Scope(manufacturer_id=manufacturer.id))

    statuses = [item.status for report in reports for item in report.items]
    assert statuses == ["failed", "failed", "failed", "normalized", "normalized"]
    assert "dampers" in reports[0].items[0].reason
    # Failed rows keep normalized_at unset for a later sweep
    assert await store.count_unnormalized_products(Scope(manufacturer_id=manufacturer.id)) == 3


@pytest.mark.asyncio
async def test_extraction_failure_is_recorded_per_product(
    store, make_manufacturer, make_products, make_schema, fire_stopping_schema
):
    await make_schema(fire_stopping_schema)
    manufacturer = await make_manufacturer()
    first, second = await make_products(manufacturer, 2)

    def fields(raw_text: str) -> FieldExtraction:
        if "number 0" in raw_text:
            raise ExtractionError("rate limited")
        return FieldExtraction(confidence=70)

    normalizer = ProductNormalizer(
        store, extraction=ScriptedExtraction(fields=fields), sleep=no_sleep
    )
    report = await normalizer.run_batch(Scope(manufacturer_id=manufacturer.id))

    assert report.error_lines() == [f"{first.id}: rate limited"]
    assert (await store.get_product(first.id)).normalized_at is None
    assert (await store.get_product(second.id)).normalized_at is not None


@pytest.mark.asyncio
async def test_scope_limits_the_batch(
    store, make_manufacturer, make_products, make_schema, fire_stopping_schema
):
    await make_schema(fire_stopping_schema)
    quelfire = await make_manufacturer()
    other = await make_manufacturer(name="Other", organization_id=2)
    await make_products(quelfire, 2)
    await make_products(other, 3, prefix="O")
    normalizer = ProductNormalizer(store, extraction=ScriptedExtraction(), sleep=no_sleep)

    report = await normalizer.run_batch(Scope(organization_id=2))

    assert report.total == 3
    assert await store.count_unnormalized_products(Scope(organization_id=1)) == 2


@pytest.mark.asyncio
async def test_handle_normalize_queues_next_batch(
    store,
    step,
    recording_bus,
    pipeline_deps,
    make_manufacturer,
    make_products,
    make_schema,
    fire_stopping_schema,
):
    await make_schema(fire_stopping_schema)
    manufacturer = await make_manufacturer()
    await make_products(manufacturer, 3)
    deps = pipeline_deps
    deps.normalizer.batch_size = 2

    summary = await handle_normalize(
        scope_event(NORMALIZE_REQUESTED, manufacturer_id=manufacturer.id), step, deps
    )

    assert summary == {"total": 2, "counts": {"normalized": 2}, "remaining": 1}
    (queued,) = recording_bus.by_name(NORMALIZE_REQUESTED)
    assert queued.data["manufacturer_id"] == manufacturer.id
    assert queued.data["cursor"]["remaining"] == 1
    assert "queue-next-batch" in step.executed


@pytest.mark.asyncio
async def test_bus_drains_backlog_in_three_invocations(
    store, pipeline_deps, make_manufacturer, make_products, make_schema, fire_stopping_schema
):
    await make_schema(fire_stopping_schema)
    manufacturer = await make_manufacturer()
    await make_products(manufacturer, 250)
    deps = pipeline_deps
    deps.normalizer.batch_size = 100

    cursors = []
    run_batch = deps.normalizer.run_batch

    async def counting_run_batch(scope, cursor=None, step=None):
        cursors.append(cursor)
        return await run_batch(scope, cursor, step=step)

    deps.normalizer.run_batch = counting_run_batch

    bus = build_bus(deps, sleep=no_sleep)
    await bus.start()
    try:
        await bus.send(scope_event(NORMALIZE_REQUESTED, manufacturer_id=manufacturer.id))
        await bus.drain()
    finally:
        await bus.stop()

    assert len(cursors) == 3
    assert cursors[0] is None
    assert [c.remaining for c in cursors[1:]] == [150, 50]
    assert isinstance(cursors[1], BatchCursor)
    assert await store.count_unnormalized_products(Scope(manufacturer_id=manufacturer.id)) == 0
