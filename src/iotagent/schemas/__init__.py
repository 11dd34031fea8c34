"""Pydantic schemas for inbound events and outbound updates."""

from iotagent.schemas.events import (
    DeviceEvent,
    DeviceStatus,
    TenancyEvent,
    UpdateEnvelope,
    UpdateMetadata,
    complete_metadata,
    current_time_ms,
    parse_device_event,
    parse_tenancy_event,
)

__all__ = [
    "DeviceEvent",
    "DeviceStatus",
    "TenancyEvent",
    "UpdateEnvelope",
    "UpdateMetadata",
    "complete_metadata",
    "current_time_ms",
    "parse_device_event",
    "parse_tenancy_event",
]
