"""
Per-tenant bearer tokens for directory service requests.

The platform's internal services trust the tenant claim carried in the
token payload and do not verify the signature for calls originating inside
the cluster, so the agent mints an unsigned JWT-shaped token locally instead
of talking to an identity provider.

Example:
    >>> token = mint_tenant_token("acme")
    >>> headers = {"Authorization": f"Bearer {token}"}
"""

import base64
import json

DEFAULT_USERNAME = "iotagent"

_HEADER_SEGMENT = "jwt schema"
_SIGNATURE_SEGMENT = "dummy signature"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def mint_tenant_token(tenant: str, username: str = DEFAULT_USERNAME) -> str:
    """
    Build a bearer token valid for the given tenant.

    Args:
        tenant: Tenant the token is scoped to (carried as the "service" claim)
        username: Username claim (default: "iotagent")

    Returns:
        Three dot-separated base64 segments: header, payload, signature
    """
    if not tenant:
        raise ValueError("tenant is required to mint a token")

    payload = json.dumps({"service": tenant, "username": username})
    return ".".join(
        (
            _b64(_HEADER_SEGMENT.encode("utf-8")),
            _b64(payload.encode("utf-8")),
            _b64(_SIGNATURE_SEGMENT.encode("utf-8")),
        )
    )


def decode_tenant_token(token: str) -> dict:
    """Return the payload claims of a token minted by mint_tenant_token."""
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("token must have three segments")
    return json.loads(base64.b64decode(parts[1]).decode("utf-8"))


__all__ = ["DEFAULT_USERNAME", "mint_tenant_token", "decode_tenant_token"]
