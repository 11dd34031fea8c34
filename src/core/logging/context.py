"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_tenant: ContextVar[str] = ContextVar("tenant", default="")
_subject: ContextVar[str] = ContextVar("subject", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_device_id: ContextVar[str] = ContextVar("device_id", default="")


def set_log_context(
    tenant: Optional[str] = None,
    subject: Optional[str] = None,
    worker_id: Optional[str] = None,
    device_id: Optional[str] = None,
) -> None:
    if tenant is not None:
        _tenant.set(tenant)
    if subject is not None:
        _subject.set(subject)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if device_id is not None:
        _device_id.set(device_id)


def get_log_context() -> Dict[str, str]:
    return {
        "tenant": _tenant.get(),
        "subject": _subject.get(),
        "worker_id": _worker_id.get(),
        "device_id": _device_id.get(),
    }


def clear_log_context() -> None:
    _tenant.set("")
    _subject.set("")
    _worker_id.set("")
    _device_id.set("")
