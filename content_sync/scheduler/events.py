# content_sync/scheduler/events.py
"""
Event Bus - lifecycle notifications for sync tasks

Listeners are called synchronously in registration order. A listener that
raises is logged and counted; the remaining listeners still run and the
scheduler never sees the exception. Coroutine listeners are scheduled on the
running loop and their failures are logged the same way.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Set, TypeVar, Union

from content_sync.models.task import SyncTask, TaskStatus, utcnow

logger = logging.getLogger("content_sync.scheduler.events")


class SyncEvent(str, Enum):
    TASK_CREATED = "taskCreated"
    TASK_STARTED = "taskStarted"
    TASK_COMPLETED = "taskCompleted"
    TASK_FAILED = "taskFailed"
    TASK_CANCELLED = "taskCancelled"
    TASK_CLEANED = "taskCleaned"
    TASK_RETRY_SCHEDULED = "taskRetryScheduled"


@dataclass(frozen=True)
class TaskEvent:
    """Payload delivered to listeners"""
    name: SyncEvent
    task_id: str
    owner_id: str
    status: TaskStatus
    task: SyncTask = field(repr=False, compare=False)
    emitted_at: datetime = field(default_factory=utcnow)

    @classmethod
    def for_task(cls, name: SyncEvent, task: SyncTask) -> "TaskEvent":
        return cls(name=name, task_id=task.id, owner_id=task.owner_id, status=task.status, task=task)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name.value,
            "task_id": self.task_id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "progress": self.task.progress,
            "emitted_at": self.emitted_at.isoformat()
        }


E = TypeVar("E")
Listener = Callable[[Any], Any]


class Publisher(ABC, Generic[E]):
    """Typed publish/subscribe contract"""

    @abstractmethod
    def subscribe(self, event_name: Any, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it"""

    @abstractmethod
    def unsubscribe(self, event_name: Any, listener: Listener):
        ...

    @abstractmethod
    def publish(self, event: E):
        ...


class EventBus(Publisher[TaskEvent]):

    def __init__(self):
        self._listeners: Dict[SyncEvent, List[Listener]] = {}
        self._wildcard: List[Listener] = []
        self._pending: Set[asyncio.Task] = set()
        self.listener_errors: int = 0
        self.published: int = 0

    def subscribe(self, event_name: Union[SyncEvent, str], listener: Listener) -> Callable[[], None]:
        name = SyncEvent(event_name)
        self._listeners.setdefault(name, []).append(listener)
        logger.debug(f"Subscribed listener to {name.value}")
        return lambda: self.unsubscribe(name, listener)

    on = subscribe

    def subscribe_all(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for every event"""
        self._wildcard.append(listener)
        return lambda: self._wildcard.remove(listener) if listener in self._wildcard else None

    def unsubscribe(self, event_name: Union[SyncEvent, str], listener: Listener):
        listeners = self._listeners.get(SyncEvent(event_name), [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event_name: Optional[Union[SyncEvent, str]] = None) -> int:
        if event_name is None:
            return sum(len(v) for v in self._listeners.values()) + len(self._wildcard)
        return len(self._listeners.get(SyncEvent(event_name), []))

    def publish(self, event: TaskEvent):
        self.published += 1
        for listener in list(self._listeners.get(event.name, [])) + list(self._wildcard):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                self.listener_errors += 1
                logger.error(f"Event listener failed ({event.name.value}) | task_id={event.task_id} | error={e}")

    def emit(self, name: SyncEvent, task: SyncTask):
        self.publish(TaskEvent.for_task(name, task))

    def _schedule(self, event: TaskEvent, awaitable):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.listener_errors += 1
            logger.error(f"Async listener for {event.name.value} dropped: no running event loop")
            return

        pending = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(pending)

        def _done(fut: asyncio.Future):
            self._pending.discard(fut)
            if fut.cancelled():
                return
            error = fut.exception()
            if error is not None:
                self.listener_errors += 1
                logger.error(f"Async event listener failed ({event.name.value}) | "
                             f"task_id={event.task_id} | error={error}")

        pending.add_done_callback(_done)

    async def drain(self):
        """Wait for scheduled coroutine listeners to finish"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class LoggingSubscriber:
    """Observability sink writing one log line per lifecycle event"""

    def __init__(self, bus: EventBus, logger_name: str = "content_sync.events"):
        self.logger = logging.getLogger(logger_name)
        self._unsubscribe = bus.subscribe_all(self)

    def __call__(self, event: TaskEvent):
        task = event.task
        level = logging.WARNING if event.name == SyncEvent.TASK_FAILED else logging.INFO
        self.logger.log(
            level,
            f"{event.name.value} | task_id={event.task_id} | owner_id={event.owner_id} | "
            f"status={event.status.value} | progress={task.progress} | "
            f"targets={task.total_targets} | retry={task.schedule.retry_count}/{task.schedule.max_retries}"
        )

    def close(self):
        self._unsubscribe()
