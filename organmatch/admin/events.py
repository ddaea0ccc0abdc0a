"""In-process event bus for SystemEvents.

Emitters put events on an asyncio queue; a background worker hands each
event to every subscription that accepts its type. Subscriptions run
concurrently and fail independently.

A subscription registered with `retries` is handed the same event again
after an exponential backoff when its handler raises. Redeliveries run as
their own tasks so a waiting retry never holds up the queue. Once retries
are exhausted the failure is logged and the event is dropped. Consumers
that cannot lose an event keep their own durable record; the verification
trigger does, through `last_pass_at` and `sweep_missed_passes`.

Usage:
    from organmatch.admin.events import emit, subscribe

    subscribe(on_profile_verified, event_types=[EventType.PROFILE_VERIFIED], retries=2, retry_delay=5.0)

    await emit(SystemEvent(
        event_type=EventType.PROFILE_VERIFIED,
        profile_id=profile.id,
        profile_kind="donor",
    ))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass
from typing import Any

from organmatch.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


@dataclass(frozen=True)
class Subscription:
    """A handler plus the event types it wants and its redelivery policy."""

    handler: EventHandler
    event_types: frozenset[EventType] | None = None  # None = every event
    retries: int = 0
    retry_delay: float = 0.0

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", repr(self.handler))

    def accepts(self, event: SystemEvent) -> bool:
        return self.event_types is None or event.event_type in self.event_types

    def backoff(self, attempt: int) -> float:
        """Seconds to wait before redelivery number `attempt` (1-based)."""
        return self.retry_delay * 2 ** (attempt - 1)


# ── Internal state ───────────────────────────────────────────────────

_subscriptions: list[Subscription] = []
_queue: asyncio.Queue[SystemEvent] | None = None
_worker_task: asyncio.Task[None] | None = None
_redeliveries: set[asyncio.Task[None]] = set()


# ── Public API ───────────────────────────────────────────────────────


def subscribe(
    handler: EventHandler,
    event_types: Iterable[EventType] | None = None,
    *,
    retries: int = 0,
    retry_delay: float = 0.0,
) -> Subscription:
    """Register `handler` for `event_types` (all events when None).

    Args:
        retries: Redeliveries after the handler raises; 0 delivers once.
        retry_delay: Seconds before the first redelivery, doubled for each
            one after it.
    """
    subscription = Subscription(
        handler=handler,
        event_types=frozenset(event_types) if event_types is not None else None,
        retries=retries,
        retry_delay=retry_delay,
    )
    _subscriptions.append(subscription)
    logger.info(
        "Subscribed %s to %s (retries=%d)",
        subscription.name,
        sorted(t.value for t in subscription.event_types) if subscription.event_types is not None else "all events",
        retries,
    )
    return subscription


def clear_subscriptions() -> None:
    """Drop every subscription. The app lifespan registers them afresh on startup."""
    _subscriptions.clear()


async def emit(event: SystemEvent) -> None:
    """Queue `event` for delivery. Never waits on subscribers."""
    global _queue
    if _queue is None:
        _queue = asyncio.Queue()
        _ensure_worker()

    await _queue.put(event)
    logger.debug("Event emitted: %s (profile=%s)", event.event_type.value, event.profile_id)


# ── Delivery ─────────────────────────────────────────────────────────


def _ensure_worker() -> None:
    global _worker_task
    if _worker_task is None or _worker_task.done():
        _worker_task = asyncio.create_task(_event_worker())
        logger.info("Event worker started")


async def _event_worker() -> None:
    if _queue is None:
        return

    while True:
        try:
            event = await _queue.get()
            await _dispatch(event)
            _queue.task_done()
        except asyncio.CancelledError:
            logger.info("Event worker shutting down")
            break
        except Exception:
            logger.exception("Error in event worker")


async def _dispatch(event: SystemEvent) -> None:
    targets = [s for s in _subscriptions if s.accepts(event)]
    if targets:
        await asyncio.gather(*[_deliver(s, event) for s in targets])


async def _deliver(subscription: Subscription, event: SystemEvent, attempt: int = 0) -> None:
    """Run one handler; on failure schedule a redelivery or give up."""
    try:
        await subscription.handler(event)
    except Exception:
        if attempt >= subscription.retries:
            logger.exception(
                "%s failed on %s %s after %d attempt(s); dropping",
                subscription.name,
                event.event_type.value,
                event.id,
                attempt + 1,
            )
            return
        delay = subscription.backoff(attempt + 1)
        logger.warning(
            "%s failed on %s %s, redelivering in %.1fs (%d/%d)",
            subscription.name,
            event.event_type.value,
            event.id,
            delay,
            attempt + 1,
            subscription.retries,
            exc_info=True,
        )
        _schedule_redelivery(subscription, event, attempt + 1, delay)


def _schedule_redelivery(subscription: Subscription, event: SystemEvent, attempt: int, delay: float) -> None:
    async def redeliver() -> None:
        await asyncio.sleep(delay)
        await _deliver(subscription, event, attempt)

    task = asyncio.create_task(redeliver())
    _redeliveries.add(task)
    task.add_done_callback(_redeliveries.discard)


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Create the queue and worker. Call during FastAPI lifespan startup."""
    global _queue
    _queue = asyncio.Queue()
    _ensure_worker()
    logger.info("Event system started with %d subscriptions", len(_subscriptions))


async def stop_event_system() -> None:
    """Drain queued events, cancel pending redeliveries, stop the worker."""
    global _worker_task, _queue

    if _queue is not None:
        await _queue.join()

    if _redeliveries:
        # Abandoned verification passes are picked up by the startup sweep
        logger.warning("Cancelling %d pending event redeliveries", len(_redeliveries))
        pending = list(_redeliveries)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    if _worker_task is not None and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass

    _worker_task = None
    _queue = None
    logger.info("Event system stopped")
