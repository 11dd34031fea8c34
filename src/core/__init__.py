"""
Core library: reusable, infrastructure-agnostic components.

Modules:
    auth        - Per-tenant bearer token minting
    resilience  - Retry with backoff
    logging     - Structured JSON logging with tenant/Kafka context
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization and worker id helpers

Design Principles:
    - No dependencies on the agent runtime (iotagent imports core, never the reverse)
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory, TokenProvider

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "TokenProvider",
]
