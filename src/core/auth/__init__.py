"""
Authentication helpers.

Provides per-tenant bearer token minting for directory service calls.
"""

from core.auth.tenant_token import (
    DEFAULT_USERNAME,
    decode_tenant_token,
    mint_tenant_token,
)

__all__ = [
    "DEFAULT_USERNAME",
    "decode_tenant_token",
    "mint_tenant_token",
]
