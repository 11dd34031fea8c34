"""
Event schemas exchanged with the platform.

Inbound:
- DeviceEvent: device lifecycle envelope {event, data} from the device manager
- TenancyEvent: tenancy-control message {tenant, ...}

Outbound:
- UpdateEnvelope: {metadata, attrs} published on a tenant's device-data topic
"""

import json
import time
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, model_validator

from core.errors import MalformedMessageError


def current_time_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class DeviceEvent(BaseModel):
    """Device lifecycle envelope.

    Attributes:
        event: Event name ("create", "update", "remove", "template.update", ...)
        data: Event body; for create/update the full device descriptor,
            for template.update a mapping carrying ``affected`` device ids
    """

    model_config = ConfigDict(extra="allow")

    event: StrictStr = Field(..., min_length=1, description="Event name")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event body")

    @property
    def device_id(self) -> Optional[str]:
        device_id = self.data.get("id")
        return str(device_id) if device_id is not None else None

    @model_validator(mode="after")
    def _check_affected(self) -> "DeviceEvent":
        affected = self.data.get("affected")
        if affected is None:
            return self
        if not isinstance(affected, list):
            raise ValueError(
                f"affected must be a list of device ids, got {type(affected).__name__}"
            )
        for device_id in affected:
            if isinstance(device_id, bool) or not isinstance(device_id, (str, int)):
                raise ValueError(
                    f"affected device id must be a string or integer, got {device_id!r}"
                )
        return self

    @property
    def affected(self) -> list:
        return [str(device_id) for device_id in self.data.get("affected") or []]


class TenancyEvent(BaseModel):
    """Tenancy-control message announcing a tenant."""

    model_config = ConfigDict(extra="allow")

    tenant: StrictStr = Field(..., min_length=1)


class DeviceStatus(BaseModel):
    value: str = "online"
    expires: int = Field(..., description="Epoch ms until which the status holds")


class UpdateMetadata(BaseModel):
    """Metadata carried by every outbound update.

    Unset fields are completed by complete_metadata(); extra keys given by
    the application are preserved as-is.
    """

    model_config = ConfigDict(extra="allow")

    deviceid: Optional[str] = None
    tenant: Optional[str] = None
    timestamp: Optional[int] = Field(default=None, description="Epoch milliseconds")
    status: Optional[DeviceStatus] = None


class UpdateEnvelope(BaseModel):
    metadata: UpdateMetadata
    attrs: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire form: unset optional fields are omitted."""
        return self.model_dump(mode="json", exclude_none=True)

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_payload()).encode("utf-8")


def complete_metadata(
    metadata: Union[UpdateMetadata, Dict[str, Any], None],
    device_id: str,
    tenant: str,
    now_ms: int,
) -> UpdateMetadata:
    """Fill in deviceid, tenant and timestamp where the caller left them unset.

    Never mutates its input.
    """
    if metadata is None:
        base = UpdateMetadata()
    elif isinstance(metadata, UpdateMetadata):
        base = metadata
    else:
        base = UpdateMetadata.model_validate(metadata)

    updates: Dict[str, Any] = {}
    if base.deviceid is None:
        updates["deviceid"] = device_id
    if base.tenant is None:
        updates["tenant"] = tenant
    if base.timestamp is None:
        updates["timestamp"] = now_ms

    return base.model_copy(update=updates, deep=True)


def _decode_object(raw: Union[bytes, str, None], topic: Optional[str]) -> Dict[str, Any]:
    if raw is None:
        raise MalformedMessageError("Empty message payload", topic=topic)
    try:
        decoded = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedMessageError(f"Payload is not valid JSON: {e}", topic=topic, cause=e) from e
    if not isinstance(decoded, dict):
        raise MalformedMessageError(
            f"Payload must be a JSON object, got {type(decoded).__name__}", topic=topic
        )
    return decoded


def parse_device_event(raw: Union[bytes, str, None], topic: Optional[str] = None) -> DeviceEvent:
    """Decode a device lifecycle message or raise MalformedMessageError."""
    decoded = _decode_object(raw, topic)
    try:
        return DeviceEvent.model_validate(decoded)
    except ValidationError as e:
        raise MalformedMessageError(f"Invalid device event: {e}", topic=topic, cause=e) from e


def parse_tenancy_event(raw: Union[bytes, str, None], topic: Optional[str] = None) -> TenancyEvent:
    """Decode a tenancy-control message or raise MalformedMessageError."""
    decoded = _decode_object(raw, topic)
    try:
        return TenancyEvent.model_validate(decoded)
    except ValidationError as e:
        raise MalformedMessageError(f"Invalid tenancy event: {e}", topic=topic, cause=e) from e
