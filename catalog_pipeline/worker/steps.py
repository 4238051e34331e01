"""Durable step execution.

A handler run is identified by its event id. Each named step's result is
persisted under that run id as JSON; when the bus redelivers the event after
a crash, completed steps return their stored result instead of running
again, so a run resumes from its last completed step.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from catalog_pipeline.config import settings

if TYPE_CHECKING:
    from catalog_pipeline.worker.bus import EventBus
    from catalog_pipeline.worker.events import Event

logger = logging.getLogger(__name__)


class StepStore(ABC):
    """Persists step results per run."""

    @abstractmethod
    async def load(self, run_id: str, step_id: str) -> Tuple[bool, Any]:
        """Return (found, value) for a step."""

    @abstractmethod
    async def save(self, run_id: str, step_id: str, value: Any) -> None: ...

    @abstractmethod
    async def clear(self, run_id: str) -> None: ...

    async def close(self) -> None:
        pass


class MemoryStepStore(StepStore):
    """In-process step store. State survives redelivery within one process."""

    def __init__(self):
        self._runs: Dict[str, Dict[str, str]] = {}

    async def load(self, run_id: str, step_id: str) -> Tuple[bool, Any]:
        steps = self._runs.get(run_id, {})
        if step_id not in steps:
            return False, None
        return True, json.loads(steps[step_id])

    async def save(self, run_id: str, step_id: str, value: Any) -> None:
        self._runs.setdefault(run_id, {})[step_id] = json.dumps(value)

    async def clear(self, run_id: str) -> None:
        self._runs.pop(run_id, None)

    def completed_steps(self, run_id: str) -> list[str]:
        return list(self._runs.get(run_id, {}))


class RedisStepStore(StepStore):
    """
    Redis-backed step store.

    One hash per run (``steps:{run_id}``), one field per step, expiring after
    settings.step_state_ttl_seconds.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.step_state_ttl_seconds
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    @staticmethod
    def _key(run_id: str) -> str:
        return f"steps:{run_id}"

    async def load(self, run_id: str, step_id: str) -> Tuple[bool, Any]:
        client = await self._get_redis()
        raw = await client.hget(self._key(run_id), step_id)
        if raw is None:
            return False, None
        return True, json.loads(raw)

    async def save(self, run_id: str, step_id: str, value: Any) -> None:
        client = await self._get_redis()
        key = self._key(run_id)
        await client.hset(key, step_id, json.dumps(value))
        await client.expire(key, self.ttl_seconds)

    async def clear(self, run_id: str) -> None:
        client = await self._get_redis()
        await client.delete(self._key(run_id))

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()
            self._redis = None


def create_step_store(backend: Optional[str] = None) -> StepStore:
    backend = backend or settings.step_store_backend
    if backend == "redis":
        return RedisStepStore()
    if backend == "memory":
        return MemoryStepStore()
    raise ValueError(f"Unknown step store backend: {backend}")


class StepContext:
    """Step runner handed to every event handler."""

    def __init__(
        self,
        run_id: str,
        store: StepStore,
        bus: "EventBus",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.run_id = run_id
        self.store = store
        self.bus = bus
        self._sleep = sleep
        self.executed: list[str] = []

    async def run(self, step_id: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``fn`` once per run id and return its (JSON round-tripped) result.

        Args:
            step_id: Unique name of the step within the run
            fn: Coroutine factory producing a JSON-serialisable result

        Returns:
            The stored result on replay, otherwise the fresh result
        """
        found, value = await self.store.load(self.run_id, step_id)
        if found:
            logger.debug(f"Step {step_id} replayed for run {self.run_id}")
            return value

        result = await fn()
        await self.store.save(self.run_id, step_id, result)
        self.executed.append(step_id)
        # Fresh and replayed runs see the same shape
        return json.loads(json.dumps(result))

    async def sleep(self, step_id: str, seconds: float) -> None:
        """Pause between steps. Skipped on replay."""
        if seconds <= 0:
            return
        found, _ = await self.store.load(self.run_id, step_id)
        if found:
            return
        await self._sleep(seconds)
        await self.store.save(self.run_id, step_id, True)

    async def send_event(self, step_id: str, event: "Event") -> None:
        """Emit an event at most once per run id."""

        async def emit() -> Dict[str, Any]:
            await self.bus.send(event)
            return {"name": event.name}

        await self.run(step_id, emit)


async def run_step(step: Optional[StepContext], step_id: str, fn: Callable[[], Awaitable[Any]]) -> Any:
    """Run ``fn`` as a durable step when a StepContext is given, else directly."""
    if step is None:
        return await fn()
    return await step.run(step_id, fn)


async def pause(
    step: Optional[StepContext],
    step_id: str,
    seconds: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Fixed delay, recorded as a step when a StepContext is given."""
    if seconds <= 0:
        return
    if step is None:
        await sleep(seconds)
    else:
        await step.sleep(step_id, seconds)
