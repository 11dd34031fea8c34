"""
Inbound subscription with an explicit session state machine.

One InboundSession consumes one (tenant, subject) stream:

    CREATED -> RESOLVING -> SUBSCRIBING -> READY
    any state -> ERRORED

aiokafka reports partition assignment on every consumer group rebalance.
The session absorbs those notifications: only the first transition into
READY invokes the on_ready hook, later ones are logged and ignored.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, List, Optional

from aiokafka import AIOKafkaConsumer, ConsumerRebalanceListener
from aiokafka.structs import ConsumerRecord

from config.config import AgentConfig
from core.errors import MalformedMessageError, ResolutionError, TransportError
from core.logging import KafkaLogContext, get_logger, log_exception, log_with_context, set_log_context
from iotagent.metrics import record_message_consumed, update_session_ready
from iotagent.topics import TopicResolver
from iotagent.transport import build_consumer_config

logger = get_logger(__name__)

# decoder(raw_value, topic) -> decoded event, raises MalformedMessageError
MessageDecoder = Callable[[Optional[bytes], str], Any]
# handler(tenant, decoded_event)
MessageHandler = Callable[[str, Any], None]


class SessionState(str, Enum):
    CREATED = "created"
    RESOLVING = "resolving"
    SUBSCRIBING = "subscribing"
    READY = "ready"
    ERRORED = "errored"


class _SessionRebalanceListener(ConsumerRebalanceListener):
    """Forwards aiokafka rebalance notifications to the owning session."""

    def __init__(self, session: "InboundSession"):
        self._session = session

    async def on_partitions_revoked(self, revoked):
        log_with_context(
            logger,
            logging.DEBUG,
            "Partitions revoked",
            tenant=self._session.tenant,
            subject=self._session.subject,
            partitions=[f"{tp.topic}:{tp.partition}" for tp in revoked],
        )

    async def on_partitions_assigned(self, assigned):
        self._session.mark_ready([f"{tp.topic}:{tp.partition}" for tp in assigned])


class InboundSession:
    """
    Consumes one tenant-scoped subject and feeds decoded events to a handler.

    Undecodable payloads are logged, counted and dropped without reaching
    the handler. Handler exceptions are logged and swallowed, so a single
    message can never stop the session.

    Usage:
        >>> session = InboundSession(
        ...     config=config,
        ...     resolver=resolver,
        ...     tenant="acme",
        ...     subject="dojot.device-manager.device",
        ...     group_id="iotagent-brave-otter",
        ...     decoder=parse_device_event,
        ...     handler=DeviceEventHandler(cache, dispatcher),
        ... )
        >>> task = asyncio.create_task(session.run())
    """

    def __init__(
        self,
        config: AgentConfig,
        resolver: TopicResolver,
        tenant: str,
        subject: str,
        group_id: str,
        decoder: MessageDecoder,
        handler: MessageHandler,
        is_global: bool = False,
        on_ready: Optional[Callable[["InboundSession"], None]] = None,
        consumer_factory: Callable[..., AIOKafkaConsumer] = AIOKafkaConsumer,
    ):
        self.config = config
        self.tenant = tenant
        self.subject = subject
        self.group_id = group_id
        self.is_global = is_global
        self.topic: Optional[str] = None

        self._resolver = resolver
        self._decoder = decoder
        self._handler = handler
        self._on_ready = on_ready
        self._consumer_factory = consumer_factory
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._state = SessionState.CREATED
        self._ready_once = False
        self._running = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        log_with_context(
            logger,
            logging.DEBUG,
            "Inbound session state changed",
            tenant=self.tenant,
            subject=self.subject,
            session_state=state.value,
        )

    def mark_ready(self, partitions: Optional[List[str]] = None) -> bool:
        """Record a partition assignment.

        Returns True only for the first transition into READY, which is
        also the only one that runs the on_ready hook.
        """
        if self._state in (SessionState.CREATED, SessionState.RESOLVING):
            log_with_context(
                logger,
                logging.WARNING,
                "Ignoring assignment for session that is not subscribed",
                tenant=self.tenant,
                subject=self.subject,
                session_state=self._state.value,
            )
            return False

        self._set_state(SessionState.READY)

        if self._ready_once:
            log_with_context(
                logger,
                logging.INFO,
                "Consumer group rebalanced",
                tenant=self.tenant,
                subject=self.subject,
                topic=self.topic,
                partitions=partitions,
            )
            return False

        self._ready_once = True
        update_session_ready(self.subject, True)
        log_with_context(
            logger,
            logging.INFO,
            "Inbound session ready",
            tenant=self.tenant,
            subject=self.subject,
            topic=self.topic,
            group_id=self.group_id,
            partitions=partitions,
        )
        if self._on_ready is not None:
            try:
                self._on_ready(self)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "on_ready hook failed",
                    tenant=self.tenant,
                    subject=self.subject,
                )
        return True

    async def run(self) -> None:
        """
        Resolve, subscribe and consume until cancelled or stopped.

        Raises:
            ResolutionError: the topic could not be resolved (state ERRORED)
        """
        if self._state is not SessionState.CREATED:
            log_with_context(
                logger,
                logging.WARNING,
                "Inbound session already started, ignoring duplicate run call",
                tenant=self.tenant,
                subject=self.subject,
                session_state=self._state.value,
            )
            return

        set_log_context(tenant=self.tenant, subject=self.subject)
        self._running = True

        self._set_state(SessionState.RESOLVING)
        try:
            self.topic = await self._resolver.resolve(self.tenant, self.subject, self.is_global)
        except ResolutionError:
            self._set_state(SessionState.ERRORED)
            self._running = False
            raise

        self._set_state(SessionState.SUBSCRIBING)
        try:
            await self._subscribe()
        except asyncio.CancelledError:
            await self._close_consumer()
            raise
        except Exception as e:
            self._set_state(SessionState.ERRORED)
            self._running = False
            error = TransportError(f"Failed to subscribe to {self.topic}: {e}", cause=e)
            log_exception(
                logger,
                error,
                "Inbound session failed to subscribe",
                tenant=self.tenant,
                subject=self.subject,
                topic=self.topic,
            )
            await self._close_consumer()
            return

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Inbound session cancelled, shutting down")
            raise
        finally:
            self._running = False
            await self._close_consumer()

    async def _subscribe(self) -> None:
        consumer_config = build_consumer_config(self.config, self.group_id)
        self._consumer = self._consumer_factory(**consumer_config)
        self._consumer.subscribe([self.topic], listener=_SessionRebalanceListener(self))
        await self._consumer.start()

        log_with_context(
            logger,
            logging.INFO,
            "Subscribed inbound session",
            tenant=self.tenant,
            subject=self.subject,
            topic=self.topic,
            group_id=self.group_id,
        )

    async def _consume_loop(self) -> None:
        while self._running and self._consumer is not None:
            try:
                data = await self._consumer.getmany(timeout_ms=1000)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._running:
                    return
                # aiokafka reconnects on its own; keep polling
                self._set_state(SessionState.ERRORED)
                log_exception(
                    logger,
                    TransportError(f"Fetch from {self.topic} failed: {e}", cause=e),
                    "Error in consumption loop",
                    tenant=self.tenant,
                    subject=self.subject,
                    topic=self.topic,
                )
                await asyncio.sleep(1)
                continue

            if self._state is SessionState.ERRORED and self._ready_once:
                self._set_state(SessionState.READY)

            for _partition, messages in data.items():
                for message in messages:
                    if not self._running:
                        return
                    self._process_message(message)

    def _process_message(self, message: ConsumerRecord) -> None:
        with KafkaLogContext(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            consumer_group=self.group_id,
        ):
            try:
                event = self._decoder(message.value, message.topic)
            except MalformedMessageError as e:
                record_message_consumed(self.subject, success=False)
                log_exception(
                    logger,
                    e,
                    "Dropping malformed message",
                    level=logging.WARNING,
                    include_traceback=False,
                    tenant=self.tenant,
                    subject=self.subject,
                )
                return

            record_message_consumed(self.subject)
            try:
                self._handler(self.tenant, event)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Handler failed for inbound message",
                    tenant=self.tenant,
                    subject=self.subject,
                )

    async def stop(self) -> None:
        """Stop consuming and close the consumer. Safe to call multiple times."""
        self._running = False
        await self._close_consumer()

    async def _close_consumer(self) -> None:
        consumer, self._consumer = self._consumer, None
        if consumer is None:
            return
        if self._ready_once:
            update_session_ready(self.subject, False)
        try:
            await consumer.stop()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error stopping inbound consumer",
                tenant=self.tenant,
                subject=self.subject,
            )
