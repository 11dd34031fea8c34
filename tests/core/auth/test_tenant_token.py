"""Tests for per-tenant token minting."""

import base64
import json

import pytest

from core.auth import DEFAULT_USERNAME, decode_tenant_token, mint_tenant_token


class TestMintTenantToken:
    def test_three_base64_segments(self):
        token = mint_tenant_token("acme")
        parts = token.split(".")
        assert len(parts) == 3
        assert base64.b64decode(parts[0]) == b"jwt schema"
        assert base64.b64decode(parts[2]) == b"dummy signature"

    def test_payload_carries_tenant_and_username(self):
        token = mint_tenant_token("acme")
        payload = json.loads(base64.b64decode(token.split(".")[1]))
        assert payload == {"service": "acme", "username": "iotagent"}

    def test_custom_username(self):
        claims = decode_tenant_token(mint_tenant_token("acme", username="ops"))
        assert claims["username"] == "ops"

    def test_default_username(self):
        assert DEFAULT_USERNAME == "iotagent"

    def test_empty_tenant_rejected(self):
        with pytest.raises(ValueError):
            mint_tenant_token("")

    def test_tokens_differ_per_tenant(self):
        assert mint_tenant_token("acme") != mint_tenant_token("globex")


class TestDecodeTenantToken:
    def test_round_trip(self):
        assert decode_tenant_token(mint_tenant_token("acme"))["service"] == "acme"

    def test_rejects_malformed(self):
        with pytest.raises(ValueError):
            decode_tenant_token("not-a-token")
