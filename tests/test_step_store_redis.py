"""Tests for the Redis step store. Skipped when no Redis server is reachable."""

import uuid

import pytest
import redis.asyncio as redis

from catalog_pipeline.config import settings
from catalog_pipeline.worker.bus import RecordingEventBus
from catalog_pipeline.worker.steps import RedisStepStore, StepContext
from tests.fakes import no_sleep


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.close()
        return True
    except Exception:
        return False


@pytest.mark.asyncio
async def test_save_load_clear():
    if not await _redis_available():
        pytest.skip("Redis not available")

    store = RedisStepStore(redis_url=settings.redis_url, ttl_seconds=60)
    run_id = f"test-{uuid.uuid4().hex}"
    try:
        assert await store.load(run_id, "discover") == (False, None)

        await store.save(run_id, "discover", {"urls": ["a"], "count": 1})
        assert await store.load(run_id, "discover") == (True, {"urls": ["a"], "count": 1})

        client = await store._get_redis()
        assert 0 < await client.ttl(f"steps:{run_id}") <= 60

        await store.clear(run_id)
        assert await store.load(run_id, "discover") == (False, None)
    finally:
        await store.clear(run_id)
        await store.close()


@pytest.mark.asyncio
async def test_step_context_replays_from_redis():
    if not await _redis_available():
        pytest.skip("Redis not available")

    store = RedisStepStore(redis_url=settings.redis_url, ttl_seconds=60)
    run_id = f"test-{uuid.uuid4().hex}"
    calls = []

    async def batch():
        calls.append(1)
        return {"fetched": 3}

    try:
        first = StepContext(run_id, store, RecordingEventBus(), sleep=no_sleep)
        replay = StepContext(run_id, store, RecordingEventBus(), sleep=no_sleep)

        assert await first.run("fetch-batch-0", batch) == {"fetched": 3}
        assert await replay.run("fetch-batch-0", batch) == {"fetched": 3}
        assert len(calls) == 1
        assert replay.executed == []
    finally:
        await store.clear(run_id)
        await store.close()
