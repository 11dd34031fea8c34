"""
Buffering outbound publisher.

OutboundSession owns one aiokafka producer and never blocks its callers:

    DISCONNECTED -> CONNECTING -> READY
    READY -> DISCONNECTING -> CONNECTING   (after a publish failure)

Events sent while the session is not READY wait in a PublishBuffer and are
delivered in order once the producer connects. A publish that fails on a
broker error goes back into the buffer in send order and triggers one
reconnect after a fixed delay; concurrent failures share that single
reconnect. Payloads are JSON-encoded by send_event, so an unencodable
event is rejected before it is ever buffered.
"""

import asyncio
import itertools
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, List, Optional, Set

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from config.config import AgentConfig
from core.errors import ResolutionError, TransportError
from core.logging import get_logger, log_exception, log_with_context
from core.utils import json_serializer
from iotagent.metrics import (
    record_event_dropped,
    record_event_published,
    record_publish_error,
    update_buffered_events,
    update_connection_status,
)
from iotagent.topics import TopicResolver
from iotagent.transport import build_producer_config

logger = get_logger(__name__)

DEFAULT_RECONNECT_DELAY_SECONDS = 20.0


def encode_payload(payload: Any) -> bytes:
    """UTF-8 JSON for the wire; bytes and str pass through unchanged.

    Raises:
        TypeError, ValueError: payload cannot be JSON-encoded
    """
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, default=json_serializer).encode("utf-8")


@dataclass(frozen=True)
class PublishRequest:
    """One event to publish, encoded when created.

    ``seq`` is the send order within an OutboundSession; re-queued requests
    are put back by it.
    """

    tenant: str
    subject: str
    payload: Any
    seq: int = 0
    value: bytes = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "value", encode_payload(self.payload))

    def encode(self) -> bytes:
        return self.value


class PublishBuffer:
    """FIFO of pending publish requests.

    max_size bounds append() only (0 = unbounded); re-queued requests are
    always accepted so a publish failure never loses an event.
    """

    def __init__(self, max_size: int = 0):
        if max_size < 0:
            raise ValueError(f"max_size must be >= 0, got {max_size}")
        self.max_size = max_size
        self._items: Deque[PublishRequest] = deque()
        self._lock = threading.Lock()

    def append(self, request: PublishRequest) -> bool:
        """Queue at the tail; returns False when the buffer is full."""
        with self._lock:
            if self.max_size and len(self._items) >= self.max_size:
                return False
            self._items.append(request)
            return True

    def requeue(self, request: PublishRequest) -> None:
        """Put a request back ahead of every request sent after it."""
        with self._lock:
            for index, queued in enumerate(self._items):
                if queued.seq > request.seq:
                    self._items.insert(index, request)
                    return
            self._items.append(request)

    def popleft(self) -> Optional[PublishRequest]:
        with self._lock:
            return self._items.popleft() if self._items else None

    def snapshot(self) -> List[PublishRequest]:
        with self._lock:
            return list(self._items)

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ProducerState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTING = "disconnecting"


class OutboundSession:
    """
    Publishes tenant-scoped events through a single aiokafka producer.

    Usage:
        >>> session = OutboundSession(config, resolver)
        >>> await session.start()
        >>> session.send_event("acme", "device-data", {"metadata": {...}, "attrs": {...}})
        >>> await session.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        resolver: TopicResolver,
        buffer: Optional[PublishBuffer] = None,
        reconnect_delay: Optional[float] = None,
        producer_factory: Callable[..., AIOKafkaProducer] = AIOKafkaProducer,
    ):
        self.config = config
        self.reconnect_delay = (
            config.reconnect_delay_seconds if reconnect_delay is None else reconnect_delay
        )
        self._resolver = resolver
        self._buffer = buffer if buffer is not None else PublishBuffer(config.buffer_max_size)
        self._producer_factory = producer_factory
        self._producer: Optional[AIOKafkaProducer] = None
        self._state = ProducerState.DISCONNECTED
        self._ready = asyncio.Event()
        self._connect_task: Optional[asyncio.Task] = None
        self._publish_tasks: Set[asyncio.Task] = set()
        self._seq = itertools.count()
        self._stopping = False

    @property
    def state(self) -> ProducerState:
        return self._state

    @property
    def buffer(self) -> PublishBuffer:
        return self._buffer

    @property
    def is_ready(self) -> bool:
        return self._state is ProducerState.READY

    def _set_state(self, state: ProducerState) -> None:
        if state is self._state:
            return
        self._state = state
        if state is ProducerState.READY:
            self._ready.set()
        else:
            self._ready.clear()
        log_with_context(
            logger,
            logging.DEBUG,
            "Outbound session state changed",
            session_state=state.value,
            buffered=len(self._buffer),
        )

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._ready.wait(), timeout)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Begin connecting in the background; returns immediately."""
        self._stopping = False
        if self._state is ProducerState.READY:
            logger.warning("Producer already started, ignoring duplicate start call")
            return
        self._schedule_connect(delay=0)

    def _schedule_connect(self, delay: float) -> bool:
        """Start the connect task unless one is already in flight."""
        if self._stopping:
            return False
        if self._connect_task is not None and not self._connect_task.done():
            log_with_context(
                logger,
                logging.DEBUG,
                "Reconnect already scheduled",
                session_state=self._state.value,
            )
            return False
        self._connect_task = asyncio.create_task(self._connect_loop(delay))
        return True

    async def _connect_loop(self, delay: float) -> None:
        while not self._stopping:
            if delay:
                log_with_context(
                    logger,
                    logging.INFO,
                    "Producer reconnect scheduled",
                    delay_seconds=delay,
                    buffered=len(self._buffer),
                )
                await asyncio.sleep(delay)
            delay = self.reconnect_delay

            self._set_state(ProducerState.CONNECTING)
            producer = self._producer_factory(**build_producer_config(self.config))
            try:
                await producer.start()
            except asyncio.CancelledError:
                await self._stop_producer(producer)
                raise
            except Exception as e:
                log_exception(
                    logger,
                    TransportError(f"Producer failed to connect: {e}", cause=e),
                    "Producer connect failed",
                    include_traceback=False,
                    delay_seconds=self.reconnect_delay,
                )
                await self._stop_producer(producer)
                self._set_state(ProducerState.DISCONNECTED)
                continue

            self._producer = producer
            update_connection_status("producer", connected=True)
            log_with_context(
                logger,
                logging.INFO,
                "Kafka producer connected",
                buffered=len(self._buffer),
            )

            await self._settle_publishes()
            if await self._drain():
                self._set_state(ProducerState.READY)
                return

    async def _drain(self) -> bool:
        """Deliver buffered events in order; False if a publish failed."""
        while True:
            request = self._buffer.popleft()
            if request is None:
                update_buffered_events(0)
                return True
            producer = self._producer
            try:
                await self._publish(request, producer)
            except asyncio.CancelledError:
                self._buffer.requeue(request)
                raise
            except (KafkaError, TransportError) as e:
                self._buffer.requeue(request)
                update_buffered_events(len(self._buffer))
                record_publish_error(request.subject, type(e).__name__)
                log_exception(
                    logger,
                    TransportError(f"Publish failed while draining: {e}", cause=e),
                    "Publish failed while draining buffer",
                    include_traceback=False,
                    tenant=request.tenant,
                    subject=request.subject,
                    buffered=len(self._buffer),
                )
                await self._disconnect()
                return False
            except Exception as e:
                self._drop_failed(request, e)

    async def _settle_publishes(self) -> None:
        """Wait for direct publishes started on an earlier producer.

        Their failures are re-queued by send order, so the drain that follows
        sees them ahead of anything sent later.
        """
        pending = [task for task in self._publish_tasks if not task.done()]
        if pending:
            await asyncio.wait(pending)

    def _drop_failed(self, request: PublishRequest, error: Exception) -> None:
        record_publish_error(request.subject, type(error).__name__)
        record_event_dropped("publish_error")
        log_exception(
            logger,
            error,
            "Dropping event after non-transport publish error",
            tenant=request.tenant,
            subject=request.subject,
        )

    async def stop(self) -> None:
        """
        Stop publishing and close the producer.

        Buffered events are delivered first when the producer is connected;
        anything still undelivered afterwards is logged and discarded.
        Safe to call multiple times.
        """
        self._stopping = True

        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        self._connect_task = None

        if self._publish_tasks:
            await asyncio.gather(*list(self._publish_tasks), return_exceptions=True)

        if self._state is ProducerState.READY and len(self._buffer):
            await self._drain()

        producer = self._producer
        if producer is not None:
            self._set_state(ProducerState.DISCONNECTING)
            try:
                await producer.flush()
            except Exception as e:
                log_exception(logger, e, "Error flushing Kafka producer")
            await self._stop_producer(producer)
        self._producer = None
        self._set_state(ProducerState.DISCONNECTED)
        update_connection_status("producer", connected=False)

        undelivered = self._buffer.clear()
        update_buffered_events(0)
        if undelivered:
            record_event_dropped("shutdown")
            log_with_context(
                logger,
                logging.WARNING,
                "Discarding undelivered events on shutdown",
                buffered=undelivered,
            )
        logger.info("Outbound session stopped")

    # =========================================================================
    # Publishing
    # =========================================================================

    def send_event(self, tenant: str, subject: str, payload: Any) -> None:
        """Publish ``payload`` on the tenant's topic for ``subject``; never blocks.

        Raises:
            ValueError: payload cannot be JSON-encoded (nothing is queued)
        """
        try:
            request = PublishRequest(tenant, subject, payload, seq=next(self._seq))
        except (TypeError, ValueError) as e:
            record_event_dropped("unencodable")
            log_exception(
                logger,
                e,
                "Rejecting event with unencodable payload",
                level=logging.WARNING,
                include_traceback=False,
                tenant=tenant,
                subject=subject,
            )
            raise ValueError(f"Event payload is not JSON-encodable: {e}") from e

        self._submit(request)

    def _submit(self, request: PublishRequest) -> None:
        if self._state is ProducerState.READY:
            task = asyncio.get_running_loop().create_task(
                self._publish_direct(request, self._producer)
            )
            self._publish_tasks.add(task)
            task.add_done_callback(self._publish_tasks.discard)
            return

        if not self._buffer.append(request):
            record_event_dropped("buffer_full")
            log_with_context(
                logger,
                logging.WARNING,
                "Publish buffer full, dropping event",
                tenant=request.tenant,
                subject=request.subject,
                buffered=len(self._buffer),
            )
            return

        update_buffered_events(len(self._buffer))
        log_with_context(
            logger,
            logging.DEBUG,
            "Producer not ready, event buffered",
            tenant=request.tenant,
            subject=request.subject,
            session_state=self._state.value,
            buffered=len(self._buffer),
        )

    async def flush(self) -> None:
        """Wait for in-flight direct publishes to finish."""
        while self._publish_tasks:
            await asyncio.gather(*list(self._publish_tasks), return_exceptions=True)

    async def _publish(self, request: PublishRequest, producer: Optional[AIOKafkaProducer]) -> None:
        """Send one request; unresolvable topics drop the event.

        Raises:
            TransportError: no producer is connected
            Exception: whatever aiokafka raised for the send
        """
        try:
            topic = await self._resolver.resolve(request.tenant, request.subject)
        except ResolutionError as e:
            record_event_dropped("unresolved_topic")
            log_exception(
                logger,
                e,
                "Dropping event for unresolvable topic",
                level=logging.WARNING,
                include_traceback=False,
                tenant=request.tenant,
                subject=request.subject,
            )
            return

        if producer is None:
            raise TransportError("Producer is not connected")

        await producer.send_and_wait(topic, value=request.encode())
        record_event_published(request.subject)
        log_with_context(
            logger,
            logging.DEBUG,
            "Event published",
            tenant=request.tenant,
            subject=request.subject,
            topic=topic,
        )

    async def _publish_direct(
        self, request: PublishRequest, producer: Optional[AIOKafkaProducer]
    ) -> None:
        try:
            await self._publish(request, producer)
        except asyncio.CancelledError:
            raise
        except (KafkaError, TransportError) as e:
            record_publish_error(request.subject, type(e).__name__)
            await self._handle_publish_failure(request, producer, e)
        except Exception as e:
            self._drop_failed(request, e)

    async def _handle_publish_failure(
        self, request: PublishRequest, producer: Optional[AIOKafkaProducer], error: Exception
    ) -> None:
        if producer is None or producer is not self._producer:
            # Failure of a producer that is already being replaced
            log_with_context(
                logger,
                logging.DEBUG,
                "Publish failed on stale producer, resubmitting",
                tenant=request.tenant,
                subject=request.subject,
            )
            if self._state is ProducerState.READY:
                self._submit(request)
            else:
                self._buffer.requeue(request)
                update_buffered_events(len(self._buffer))
            return

        self._buffer.requeue(request)
        update_buffered_events(len(self._buffer))
        log_exception(
            logger,
            TransportError(f"Publish failed: {error}", cause=error),
            "Publish failed, reconnecting producer",
            include_traceback=False,
            tenant=request.tenant,
            subject=request.subject,
            delay_seconds=self.reconnect_delay,
            buffered=len(self._buffer),
        )
        await self._disconnect()
        self._schedule_connect(self.reconnect_delay)

    async def _disconnect(self) -> None:
        producer, self._producer = self._producer, None
        self._set_state(ProducerState.DISCONNECTING)
        update_connection_status("producer", connected=False)
        if producer is not None:
            await self._stop_producer(producer)
        self._set_state(ProducerState.DISCONNECTED)

    async def _stop_producer(self, producer: AIOKafkaProducer) -> None:
        try:
            await producer.stop()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error stopping Kafka producer",
                level=logging.WARNING,
                include_traceback=False,
            )
