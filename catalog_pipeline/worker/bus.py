"""Event bus implementations.

The production deployment runs every handler in one worker process, so the
bus is an asyncio queue per event name with a fixed-size worker pool per
queue. Delivery is at-least-once: a handler that raises gets the same event
(same id) again until ``max_deliveries`` is reached, and completed steps are
replayed from the step store.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from catalog_pipeline.config import settings
from catalog_pipeline.metrics import event_deliveries_total
from catalog_pipeline.worker.events import Event
from catalog_pipeline.worker.steps import MemoryStepStore, StepContext, StepStore

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event, StepContext], Awaitable[Any]]


class EventBus(ABC):
    """Sends named events to whatever consumes them."""

    @abstractmethod
    async def send(self, event: Event) -> None: ...


class RecordingEventBus(EventBus):
    """Collects sent events without delivering them. Used for tests and dry runs."""

    def __init__(self):
        self.sent: List[Event] = []

    async def send(self, event: Event) -> None:
        if event.id is None:
            event = event.model_copy(update={"id": uuid.uuid4().hex})
        self.sent.append(event)

    def names(self) -> List[str]:
        return [event.name for event in self.sent]

    def by_name(self, name: str) -> List[Event]:
        return [event for event in self.sent if event.name == name]

    def clear(self) -> None:
        self.sent.clear()


class InProcessEventBus(EventBus):
    """
    asyncio event bus with per-event concurrency ceilings.

    Usage:
        bus = InProcessEventBus(step_store)
        bus.register("normalize.requested", handler, concurrency=1)
        await bus.start()
        await bus.send(Event(name="normalize.requested"))
        await bus.drain()
        await bus.stop()
    """

    def __init__(
        self,
        step_store: Optional[StepStore] = None,
        max_deliveries: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.step_store = step_store or MemoryStepStore()
        self.max_deliveries = max_deliveries or settings.event_max_deliveries
        self._sleep = sleep
        self._handlers: Dict[str, EventHandler] = {}
        self._concurrency: Dict[str, int] = {}
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: List[asyncio.Task] = []
        self._running = False
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def register(self, name: str, handler: EventHandler, concurrency: int = 1) -> None:
        if self._running:
            raise RuntimeError("Cannot register handlers on a running bus")
        self._handlers[name] = handler
        self._concurrency[name] = max(1, concurrency)

    async def start(self) -> None:
        if self._running:
            return
        for name, concurrency in self._concurrency.items():
            queue: asyncio.Queue = asyncio.Queue()
            self._queues[name] = queue
            for index in range(concurrency):
                self._workers.append(
                    asyncio.create_task(self._worker(name, queue), name=f"{name}-worker-{index}")
                )
        self._running = True
        logger.info(
            "Event bus started: "
            + ", ".join(f"{name} x{count}" for name, count in self._concurrency.items())
        )

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
        self._running = False
        logger.info("Event bus stopped")

    async def send(self, event: Event) -> None:
        if event.id is None:
            event = event.model_copy(update={"id": uuid.uuid4().hex})

        queue = self._queues.get(event.name)
        if queue is None:
            logger.warning(f"No handler running for event {event.name}; dropped {event.id}")
            return
        self._pending += 1
        self._idle.clear()
        await queue.put(event)
        logger.debug(f"Queued {event.name} ({event.id})")

    async def drain(self) -> None:
        """Wait until every queue is empty and no handler is running."""
        await self._idle.wait()

    async def _worker(self, name: str, queue: asyncio.Queue) -> None:
        handler = self._handlers[name]
        while True:
            event: Event = await queue.get()
            try:
                await self._deliver(handler, event)
            finally:
                queue.task_done()
                self._pending -= 1
                if self._pending == 0:
                    self._idle.set()

    async def _deliver(self, handler: EventHandler, event: Event) -> None:
        step = StepContext(event.id, self.step_store, self, sleep=self._sleep)
        try:
            await handler(event, step)
        except Exception as e:
            if event.attempt < self.max_deliveries:
                logger.warning(
                    f"Handler for {event.name} ({event.id}) failed on attempt "
                    f"{event.attempt}: {e}; redelivering"
                )
                event_deliveries_total.labels(event=event.name, outcome="redelivered").inc()
                await self.send(event.model_copy(update={"attempt": event.attempt + 1}))
            else:
                logger.error(
                    f"Handler for {event.name} ({event.id}) failed after "
                    f"{event.attempt} deliveries: {e}",
                    exc_info=True,
                )
                event_deliveries_total.labels(event=event.name, outcome="error").inc()
                await self.step_store.clear(event.id)
            return

        event_deliveries_total.labels(event=event.name, outcome="ok").inc()
        await self.step_store.clear(event.id)
