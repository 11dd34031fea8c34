"""
IoT agent composition root.

IoTAgent wires the directory client, topic resolver, device cache,
consumer registry, callback dispatcher, tenant supervisor and outbound
session together and exposes the application-facing operations.

Usage:
    >>> agent = IoTAgent()
    >>> agent.on("device.create", lambda tenant, event: print(event["data"]["id"]))
    >>> async with agent:
    ...     device = await agent.get_device("d1", "acme")
    ...     agent.update_attrs("d1", "acme", {"temperature": 21.5})
"""

import asyncio
import copy
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from config.config import AgentConfig, load_config
from core.auth import mint_tenant_token
from core.errors import InitializationError, UnknownDeviceError
from core.logging import get_logger, log_with_context, set_log_context
from core.types import TokenProvider
from core.utils import generate_worker_id
from iotagent.cache import CacheStatus, DeviceCache
from iotagent.consumer import InboundSession
from iotagent.directory import DirectoryClient
from iotagent.dispatcher import Dispatcher, EventCallback
from iotagent.handlers import DeviceEventHandler
from iotagent.producer import OutboundSession
from iotagent.registry import ConsumerRegistry
from iotagent.schemas import (
    DeviceStatus,
    UpdateEnvelope,
    UpdateMetadata,
    complete_metadata,
    current_time_ms,
)
from iotagent.tenancy import TenantSupervisor
from iotagent.topics import TopicResolver

logger = get_logger(__name__)

Expiry = Union[int, float, datetime]


def _to_epoch_ms(value: Expiry) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)


class IoTAgent:
    """
    Synchronizes device state between an application and the platform.

    Every shared structure (topic cache, device cache, registry, callback
    table, publish buffer) belongs to this instance; two agents in one
    process share nothing.

    Args:
        config: Agent configuration; loaded from config.yaml when omitted
        overrides: Mapping deep-merged over config.yaml when ``config`` is
            omitted, e.g. {"device-manager": {"manager": "http://devm:5000"}}
        directory: Directory client; built from the configuration when omitted
        token_provider: Per-tenant bearer token source for directory calls
        consumer_factory: aiokafka consumer class, replaceable in tests
        producer_factory: aiokafka producer class, replaceable in tests
        session_factory: InboundSession class, replaceable in tests
        clock: Monotonic clock for the device cache
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        overrides: Optional[Dict[str, Any]] = None,
        directory: Optional[DirectoryClient] = None,
        token_provider: TokenProvider = mint_tenant_token,
        consumer_factory: Callable[..., AIOKafkaConsumer] = AIOKafkaConsumer,
        producer_factory: Callable[..., AIOKafkaProducer] = AIOKafkaProducer,
        session_factory: Callable[..., InboundSession] = InboundSession,
        clock: Callable[[], float] = time.monotonic,
    ):
        if config is not None and overrides:
            raise InitializationError("Pass either config or overrides, not both")
        if config is None:
            try:
                config = load_config(overrides=overrides)
            except (FileNotFoundError, ValueError) as e:
                raise InitializationError(f"Invalid agent configuration: {e}", cause=e) from e

        self.config = config
        self.group_id = config.group_id or generate_worker_id(config.group_id_prefix)

        self._owns_directory = directory is None
        self.directory = directory or DirectoryClient.from_config(config, token_provider)
        self.resolver = TopicResolver(self.directory)
        self.cache = DeviceCache(
            ttl=config.device_ttl_seconds,
            invalid_ttl=config.invalid_ttl_seconds,
            clock=clock,
        )
        self.registry = ConsumerRegistry()
        self.dispatcher = Dispatcher()
        self.producer = OutboundSession(config, self.resolver, producer_factory=producer_factory)
        self.supervisor = TenantSupervisor(
            config=config,
            resolver=self.resolver,
            directory=self.directory,
            registry=self.registry,
            group_id=self.group_id,
            device_handler=DeviceEventHandler(self.cache, self.dispatcher),
            consumer_factory=consumer_factory,
            session_factory=session_factory,
        )

        self._pruner_task: Optional[asyncio.Task] = None
        self._started = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self, retry: bool = True) -> None:
        """Start the producer, the tenancy session and the cache pruner.

        Returns once everything is started in the background; the producer
        buffers updates until it is connected.
        """
        if self._started:
            logger.warning("Agent already initialized, ignoring duplicate init call")
            return

        set_log_context(worker_id=self.group_id)
        log_with_context(
            logger,
            logging.INFO,
            "Initializing IoT agent",
            group_id=self.group_id,
        )

        await self.producer.start()
        await self.supervisor.start(retry=retry)
        self._pruner_task = asyncio.create_task(self.cache.run_pruner())
        self._started = True

    async def stop(self) -> None:
        """Stop sessions, flush the producer and close HTTP resources."""
        if self._pruner_task is not None:
            self._pruner_task.cancel()
            try:
                await self._pruner_task
            except asyncio.CancelledError:
                pass
            self._pruner_task = None

        await self.supervisor.stop()
        await self.producer.stop()
        if self._owns_directory:
            await self.directory.close()

        self._started = False
        logger.info("IoT agent stopped")

    async def __aenter__(self) -> "IoTAgent":
        await self.init(retry=self.config.bootstrap_retry)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # =========================================================================
    # Inbound
    # =========================================================================

    def on(self, event: str, callback: EventCallback) -> None:
        """Register ``callback(tenant, envelope)`` for an event type such as "device.create"."""
        self.dispatcher.on(event, callback)

    async def get_device(self, device_id: str, tenant: str) -> Dict[str, Any]:
        """
        Full device descriptor, served from the cache when possible.

        Returns a copy; changing it never affects the cached entry.

        Raises:
            UnknownDeviceError: device is unknown upstream (cached for the negative TTL)
            DirectoryApiError: any other directory failure (not cached)
        """
        lookup = self.cache.get(tenant, device_id)
        if lookup.status is CacheStatus.KNOWN_ABSENT:
            raise UnknownDeviceError(device_id, tenant)
        if lookup.status is CacheStatus.HIT:
            return copy.deepcopy(lookup.descriptor)

        try:
            descriptor = await self.directory.get_device(tenant, device_id)
        except UnknownDeviceError:
            self.cache.put_invalid(tenant, device_id)
            raise

        self.cache.put(tenant, device_id, descriptor)
        return copy.deepcopy(descriptor)

    async def list_devices(self, tenant: str) -> List[str]:
        return await self.directory.list_devices(tenant)

    async def list_tenants(self) -> List[str]:
        return await self.directory.list_tenants()

    # =========================================================================
    # Outbound
    # =========================================================================

    async def register_subject(self, subject: str, tenant: str) -> str:
        """Resolve the tenant's topic for ``subject`` ahead of the first publish."""
        return await self.resolver.resolve(tenant, subject)

    def update_attrs(
        self,
        device_id: str,
        tenant: str,
        attrs: Dict[str, Any],
        metadata: Union[UpdateMetadata, Dict[str, Any], None] = None,
    ) -> None:
        """Publish an attribute update for the device.

        Raises:
            ValueError: attrs or metadata cannot be serialized to JSON
        """
        envelope = UpdateEnvelope(
            metadata=complete_metadata(metadata, device_id, tenant, current_time_ms()),
            attrs=attrs,
        )
        self.producer.send_event(tenant, self.config.iota_subject, envelope.to_payload())

    def set_online(self, device_id: str, tenant: str, expires: Optional[Expiry] = None) -> None:
        """Mark the device online until ``expires`` (epoch ms or datetime; default now)."""
        now = current_time_ms()
        expires_ms = now if expires is None else _to_epoch_ms(expires)
        metadata = UpdateMetadata(status=DeviceStatus(value="online", expires=expires_ms))
        envelope = UpdateEnvelope(metadata=complete_metadata(metadata, device_id, tenant, now))
        self.producer.send_event(tenant, self.config.iota_subject, envelope.to_payload())

    def set_offline(self, device_id: str, tenant: str) -> None:
        """Mark the device offline right away (an online status expiring now)."""
        self.set_online(device_id, tenant, expires=current_time_ms())
