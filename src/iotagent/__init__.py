"""
Multi-tenant IoT agent runtime.

Keeps device state in sync between an application and the platform:
per-tenant device lifecycle subscriptions, a self-expiring device cache
and a buffering publisher for attribute updates.
"""

from core.errors import (
    AgentError,
    InitializationError,
    MalformedMessageError,
    ResolutionError,
    TransportError,
    UnknownDeviceError,
    UnknownTenantError,
)
from iotagent.agent import IoTAgent
from iotagent.cache import CacheLookup, CacheStatus, DeviceCache
from iotagent.consumer import InboundSession, SessionState
from iotagent.dispatcher import Dispatcher
from iotagent.producer import OutboundSession, ProducerState, PublishBuffer
from iotagent.registry import ConsumerRegistry
from iotagent.tenancy import TenantSupervisor
from iotagent.topics import TopicResolver

__all__ = [
    "IoTAgent",
    # Components
    "CacheLookup",
    "CacheStatus",
    "ConsumerRegistry",
    "DeviceCache",
    "Dispatcher",
    "InboundSession",
    "OutboundSession",
    "ProducerState",
    "PublishBuffer",
    "SessionState",
    "TenantSupervisor",
    "TopicResolver",
    # Errors
    "AgentError",
    "InitializationError",
    "MalformedMessageError",
    "ResolutionError",
    "TransportError",
    "UnknownDeviceError",
    "UnknownTenantError",
]
