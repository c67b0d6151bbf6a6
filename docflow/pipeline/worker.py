"""Stage worker: the bounded pull loop around a pipeline stage.

A worker belongs to one consumer group on one subject. It pulls at most
``max_in_flight`` events at a time, runs the stage for each one and settles
every delivery exactly one way:

- acknowledged after successors are published and the work unit recorded
- skipped (and acknowledged) when the work unit was already processed
- nacked with exponential backoff for retryable failures
- dead-lettered for malformed events, missing inputs or exhausted budgets

Stopping the worker stops pulling immediately; in-flight events get a grace
period, and anything unfinished stays unacknowledged so the log redelivers it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter

from docflow.common.tracing import EventContext
from docflow.core.errors import DocflowError, NotFoundError, SchemaViolationError
from docflow.core.events import EventHeader
from docflow.core.ports.event_log import Delivery, EventLog
from docflow.core.ports.idempotency import ProcessedEventStore
from docflow.pipeline.stages import EventAttempt, EventState, Stage

logger = logging.getLogger(__name__)

# Failures that cannot succeed on redelivery
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (SchemaViolationError, NotFoundError)


class StageWorker:
    """Consume one stage's input subject as a member of its consumer group."""

    def __init__(
        self,
        stage: Stage,
        event_log: EventLog,
        processed: ProcessedEventStore,
        *,
        consumer: str,
        max_in_flight: int = 4,
        processing_timeout: float = 240.0,
        shutdown_grace: float = 30.0,
    ) -> None:
        """Initialize StageWorker.

        Args:
            stage: Stage executed for every event.
            event_log: Log the stage consumes from and publishes to.
            processed: Record of work units already completed by the group.
            consumer: Name of this worker within the consumer group.
            max_in_flight: Upper bound on concurrently processed events.
            processing_timeout: Time one event may take before it is abandoned
                and retried. Must stay below the log's ack deadline.
            shutdown_grace: Time in-flight events get to finish on shutdown.
        """
        self.stage = stage
        self.event_log = event_log
        self.processed = processed
        self.consumer = consumer
        self.max_in_flight = max_in_flight
        self.processing_timeout = processing_timeout
        self.shutdown_grace = shutdown_grace
        self.policy = event_log.policy

        self.stats: Counter[str] = Counter()
        self._shutdown = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()
        self._fatal: BaseException | None = None

        logger.info(
            "Initialized StageWorker",
            extra={
                "stage": stage.name,
                "group": stage.group,
                "consumer": consumer,
                "max_in_flight": max_in_flight,
            },
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def should_stop(self) -> bool:
        return self._shutdown.is_set()

    def signal_stop(self) -> None:
        """Signal worker to stop pulling and drain in-flight events."""
        if not self._shutdown.is_set():
            logger.info("Received stop signal", extra={"stage": self.stage.name})
        self._shutdown.set()

    async def start(self) -> None:
        """Create the subjects, consumer group and buckets the stage uses."""
        await self.event_log.ensure_stream(self.stage.input_subject, self.stage.group)
        await self.event_log.ensure_stream(self.stage.output_subject)
        await self.stage.prepare()

    async def run(self) -> None:
        """Pull and process events until stopped.

        Raises:
            MemoryError: If a stage ran out of memory; the worker drains and
                re-raises so the process exits.
        """
        await self.start()
        logger.info("Starting stage worker", extra={"stage": self.stage.name})

        slots = asyncio.Semaphore(self.max_in_flight)
        deliveries = self.event_log.subscribe(
            self.stage.input_subject,
            self.stage.group,
            self.consumer,
            prefetch=1,
            stop=self._shutdown,
        )

        try:
            while not self.should_stop():
                if not await self._acquire_slot(slots):
                    break

                try:
                    delivery = await anext(deliveries)
                except StopAsyncIteration:
                    slots.release()
                    break

                task = asyncio.create_task(self._run_one(delivery, slots))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            await self._drain()
            await deliveries.aclose()
            logger.info(
                "Stage worker stopped",
                extra={"stage": self.stage.name, **dict(self.stats)},
            )

        if self._fatal is not None:
            raise self._fatal

    async def _acquire_slot(self, slots: asyncio.Semaphore) -> bool:
        """Wait for a free slot; return False once shutdown was requested."""
        acquire = asyncio.ensure_future(slots.acquire())
        stopped = asyncio.ensure_future(self._shutdown.wait())
        await asyncio.wait({acquire, stopped}, return_when=asyncio.FIRST_COMPLETED)
        stopped.cancel()

        if not acquire.done():
            acquire.cancel()
            return False
        if self.should_stop():
            slots.release()
            return False
        return True

    async def _drain(self) -> None:
        if not self._tasks:
            return

        pending = set(self._tasks)
        logger.info(
            "Draining in-flight events",
            extra={"in_flight": len(pending), "grace_s": self.shutdown_grace},
        )
        _done, unfinished = await asyncio.wait(pending, timeout=self.shutdown_grace)

        for task in unfinished:
            task.cancel()
        if unfinished:
            logger.warning(
                "Abandoned in-flight events; they stay unacknowledged",
                extra={"abandoned": len(unfinished)},
            )
            await asyncio.gather(*unfinished, return_exceptions=True)

    async def _run_one(self, delivery: Delivery, slots: asyncio.Semaphore) -> None:
        try:
            await self.handle(delivery)
        except DocflowError:
            # Settling failed; the entry stays pending until the ack deadline
            logger.exception(
                "Failed to settle event",
                extra={"position": delivery.handle.message_id},
            )
        finally:
            slots.release()

    async def handle(self, delivery: Delivery) -> EventAttempt:
        """Process one delivery and settle it.

        Returns:
            The attempt, ending in its terminal state. Attempts abandoned by a
            fatal error stay in the state they reached.
        """
        attempt = EventAttempt(delivery.handle.message_id, delivery.handle.delivery_count)

        try:
            event = delivery.event
            if not isinstance(event, self.stage.input_type):
                raise SchemaViolationError(
                    f"{self.stage.name} expects {self.stage.input_type.__name__}, "
                    f"got {type(event).__name__}"
                )
        except SchemaViolationError as exc:
            await self._dead_letter(delivery, attempt, exc)
            return attempt

        with EventContext(workflow_id=event.workflow_id, event_id=event.event_id):
            try:
                await asyncio.wait_for(
                    self._process(event, delivery, attempt),
                    timeout=self.processing_timeout,
                )
            except NON_RETRYABLE_ERRORS as exc:
                await self._dead_letter(delivery, attempt, exc)
            except MemoryError as exc:
                logger.critical("Stage ran out of memory; stopping worker")
                self._fatal = exc
                self.signal_stop()
            except Exception as exc:
                await self._retry(delivery, attempt, exc)

        return attempt

    async def _process(self, event: EventHeader, delivery: Delivery, attempt: EventAttempt) -> None:
        key = event.idempotency_key
        if await self.processed.is_processed(self.stage.group, key):
            logger.info("Skipping already processed event", extra={"idempotency_key": key})
            await self.event_log.ack(delivery.handle)
            attempt.advance(EventState.SKIPPED_DUPLICATE)
            self.stats[EventState.SKIPPED_DUPLICATE.value] += 1
            return

        successors = await self.stage.execute(event, attempt)

        attempt.advance(EventState.PUBLISHING_SUCCESSOR)
        for successor in successors:
            await self.event_log.publish(self.stage.output_subject, successor)
        await self.stage.after_publish(event, successors)

        await self.processed.mark_processed(self.stage.group, key)
        await self.event_log.ack(delivery.handle)
        attempt.advance(EventState.ACKNOWLEDGED)
        self.stats[EventState.ACKNOWLEDGED.value] += 1

        logger.info(
            "Processed event",
            extra={
                "stage": self.stage.name,
                "successors": len(successors),
                "delivery_count": delivery.handle.delivery_count,
            },
        )

    async def _retry(self, delivery: Delivery, attempt: EventAttempt, exc: Exception) -> None:
        count = delivery.handle.delivery_count
        if count >= self.policy.max_deliveries:
            await self._dead_letter(delivery, attempt, exc)
            return

        delay = self.policy.calculate_backoff_delay(count)
        await self.event_log.nack(delivery.handle, delay=delay)
        attempt.advance(EventState.RETRY_SCHEDULED)
        self.stats[EventState.RETRY_SCHEDULED.value] += 1

        logger.warning(
            "Event processing failed, scheduled retry",
            extra={
                "stage": self.stage.name,
                "delivery_count": count,
                "delay_s": delay,
                "error": _describe(exc),
            },
        )

    async def _dead_letter(self, delivery: Delivery, attempt: EventAttempt, exc: Exception) -> None:
        await self.event_log.dead_letter(delivery.handle, delivery.fields, _describe(exc))
        attempt.advance(EventState.DEAD_LETTERED)
        self.stats[EventState.DEAD_LETTERED.value] += 1


def _describe(exc: BaseException) -> str:
    message = str(exc) or "no message"
    return f"{type(exc).__name__}: {message}"


__all__ = ["NON_RETRYABLE_ERRORS", "StageWorker"]
