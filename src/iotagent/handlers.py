"""
Handlers for decoded inbound events.

DeviceEventHandler keeps the device cache in step with lifecycle events
and then hands the envelope to the application's callbacks.
TenancyEventHandler starts the device session of newly announced tenants.
"""

import logging
from typing import Callable

from core.logging import get_logger, log_with_context
from iotagent.cache import DeviceCache
from iotagent.dispatcher import Dispatcher, dispatch_key
from iotagent.schemas import DeviceEvent, TenancyEvent

logger = get_logger(__name__)


class DeviceEventHandler:
    """Applies device lifecycle events to the cache, then dispatches them.

    Cache updates always happen before callbacks run, so a callback that
    calls get_device() sees the new state.
    """

    def __init__(self, cache: DeviceCache, dispatcher: Dispatcher):
        self._cache = cache
        self._dispatcher = dispatcher

    def __call__(self, tenant: str, event: DeviceEvent) -> None:
        name = event.event

        if name in ("create", "update"):
            device_id = event.device_id
            if device_id is None:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Device event without data.id, cache not updated",
                    tenant=tenant,
                    event_type=name,
                )
            else:
                self._cache.put(tenant, device_id, event.data)
        elif name == "remove":
            device_id = event.device_id
            if device_id is not None:
                self._cache.delete(tenant, device_id)
        elif name == "template.update":
            for device_id in event.affected:
                self._cache.delete(tenant, device_id)

        log_with_context(
            logger,
            logging.DEBUG,
            "Dispatching device event",
            tenant=tenant,
            device_id=event.device_id,
            event_type=name,
        )
        self._dispatcher.dispatch(dispatch_key(name), tenant, event.model_dump())


class TenancyEventHandler:
    """Calls ``bootstrap_tenant`` for every tenant announced on the tenancy stream."""

    def __init__(self, bootstrap_tenant: Callable[[str], bool]):
        self._bootstrap_tenant = bootstrap_tenant

    def __call__(self, _control_tenant: str, event: TenancyEvent) -> None:
        started = self._bootstrap_tenant(event.tenant)
        log_with_context(
            logger,
            logging.INFO if started else logging.DEBUG,
            "Tenancy event received",
            tenant=event.tenant,
            operation="bootstrap" if started else "already_running",
        )
