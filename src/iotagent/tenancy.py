"""
Tenant discovery and per-tenant session management.

The supervisor listens on the global tenancy-control subject. When that
session first becomes ready it bootstraps every tenant the auth service
already knows about; afterwards each tenancy message starts the device
session of the announced tenant. The ConsumerRegistry guarantees at most
one device session per tenant, whichever path gets there first.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from aiokafka import AIOKafkaConsumer

from config.config import AgentConfig
from core.errors import ResolutionError
from core.logging import get_logger, log_exception, log_with_context
from core.resilience import RetryConfig, with_retry_async
from iotagent.consumer import InboundSession, MessageHandler
from iotagent.directory import DirectoryClient
from iotagent.handlers import TenancyEventHandler
from iotagent.registry import TENANCY_KEY, ConsumerRegistry, device_key
from iotagent.schemas import parse_device_event, parse_tenancy_event
from iotagent.topics import TopicResolver

logger = get_logger(__name__)


class TenantSupervisor:
    """Starts and tracks the tenancy session and one device session per tenant.

    Args:
        config: Agent configuration (subjects, internal tenant, retry delay)
        resolver: Shared topic resolver
        directory: Directory client used to list tenants
        registry: Shared consumer registry
        group_id: Consumer group shared by every session of this agent
        device_handler: Handler for decoded device lifecycle events
        consumer_factory: aiokafka consumer class, replaceable in tests
        session_factory: InboundSession class, replaceable in tests
    """

    def __init__(
        self,
        config: AgentConfig,
        resolver: TopicResolver,
        directory: DirectoryClient,
        registry: ConsumerRegistry,
        group_id: str,
        device_handler: MessageHandler,
        consumer_factory: Callable[..., AIOKafkaConsumer] = AIOKafkaConsumer,
        session_factory: Callable[..., InboundSession] = InboundSession,
    ):
        self.config = config
        self.group_id = group_id
        self._resolver = resolver
        self._directory = directory
        self._registry = registry
        self._device_handler = device_handler
        self._consumer_factory = consumer_factory
        self._session_factory = session_factory

        self._retry = True
        self._tenancy_session: Optional[InboundSession] = None
        self._tenancy_task: Optional[asyncio.Task] = None
        self._bootstrap_task: Optional[asyncio.Task] = None
        self._sessions: Dict[str, InboundSession] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def tenancy_session(self) -> Optional[InboundSession]:
        return self._tenancy_session

    @property
    def tenants(self) -> List[str]:
        """Tenants with a device session started."""
        return sorted(self._sessions)

    def session(self, tenant: str) -> Optional[InboundSession]:
        return self._sessions.get(tenant)

    def _retry_config(self) -> RetryConfig:
        return RetryConfig.fixed(
            self.config.bootstrap_retry_delay_seconds,
            max_attempts=None if self._retry else 1,
        )

    def _new_session(self, tenant: str, subject: str, **kwargs) -> InboundSession:
        return self._session_factory(
            config=self.config,
            resolver=self._resolver,
            tenant=tenant,
            subject=subject,
            group_id=self.group_id,
            consumer_factory=self._consumer_factory,
            **kwargs,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, retry: bool = True) -> None:
        """Start the tenancy session in the background.

        With retry enabled, failed topic resolution and tenant listing are
        retried every bootstrap_retry_delay_seconds forever; otherwise once.
        """
        if self._tenancy_task is not None and not self._tenancy_task.done():
            logger.warning("Tenant supervisor already started, ignoring duplicate start call")
            return
        self._retry = retry
        self._tenancy_task = asyncio.create_task(self._run_tenancy())

    async def stop(self) -> None:
        """Cancel the bootstrap and every session task."""
        tasks = [
            task
            for task in (self._bootstrap_task, self._tenancy_task, *self._tasks.values())
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._bootstrap_task = None
        self._tenancy_task = None
        self._tasks.clear()
        log_with_context(
            logger,
            logging.INFO,
            "Tenant supervisor stopped",
            entries=len(self._sessions),
        )

    async def _run_tenancy(self) -> None:
        @with_retry_async(config=self._retry_config())
        async def run_tenancy_session() -> None:
            session = self._new_session(
                self.config.internal_tenant,
                self.config.tenancy_subject,
                decoder=parse_tenancy_event,
                handler=TenancyEventHandler(self.bootstrap_tenant),
                is_global=True,
                on_ready=self._on_tenancy_ready,
            )
            self._tenancy_session = session
            await session.run()

        try:
            await run_tenancy_session()
        except ResolutionError as e:
            log_exception(
                logger,
                e,
                "Tenancy session could not be started",
                include_traceback=False,
                tenant=self.config.internal_tenant,
                subject=self.config.tenancy_subject,
            )

    # =========================================================================
    # Bootstrap
    # =========================================================================

    def _on_tenancy_ready(self, _session: InboundSession) -> None:
        self._bootstrap_task = asyncio.get_running_loop().create_task(self.bootstrap())

    async def bootstrap(self) -> List[str]:
        """Start device sessions for every tenant the directory lists.

        Runs at most once per agent (guarded by the "tenancy" registry key);
        returns the tenants whose sessions were newly started.
        """
        if not self._registry.claim(TENANCY_KEY):
            logger.debug("Tenancy bootstrap already done, skipping")
            return []

        @with_retry_async(config=self._retry_config())
        async def list_tenants() -> List[str]:
            return await self._directory.list_tenants()

        try:
            tenants = await list_tenants()
        except asyncio.CancelledError:
            self._registry.release(TENANCY_KEY)
            raise
        except Exception as e:
            self._registry.release(TENANCY_KEY)
            log_exception(
                logger,
                e,
                "Failed to acquire existing tenancy contexts",
                include_traceback=False,
            )
            return []

        started = [tenant for tenant in tenants if self.bootstrap_tenant(tenant)]
        log_with_context(
            logger,
            logging.INFO,
            "Tenancy context management initialized",
            entries=len(tenants),
            operation="bootstrap",
        )
        return started

    def bootstrap_tenant(self, tenant: str) -> bool:
        """Start the tenant's device session unless one is already running.

        Returns True when a new session was started.
        """
        if not self._registry.claim(device_key(tenant)):
            log_with_context(
                logger,
                logging.DEBUG,
                "Device session already running for tenant",
                tenant=tenant,
            )
            return False

        session = self._new_session(
            tenant,
            self.config.device_subject,
            decoder=parse_device_event,
            handler=self._device_handler,
        )
        self._sessions[tenant] = session
        task = asyncio.get_running_loop().create_task(self._run_device_session(tenant, session))
        self._tasks[tenant] = task

        log_with_context(
            logger,
            logging.INFO,
            "Starting device session for tenant",
            tenant=tenant,
            subject=self.config.device_subject,
        )
        return True

    async def _run_device_session(self, tenant: str, session: InboundSession) -> None:
        try:
            await session.run()
        except ResolutionError as e:
            # Free the claim so a later tenancy event or bootstrap can retry
            self._sessions.pop(tenant, None)
            self._registry.release(device_key(tenant))
            log_exception(
                logger,
                e,
                "Device session could not be started",
                include_traceback=False,
                tenant=tenant,
                subject=self.config.device_subject,
            )
        finally:
            if self._tasks.get(tenant) is asyncio.current_task():
                del self._tasks[tenant]
