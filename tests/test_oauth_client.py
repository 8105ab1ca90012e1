"""MicrosoftOAuthClient tests."""

import base64
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from adapters.external.oauth_client import SHARED_MAILBOX_SCOPES, MicrosoftOAuthClient, decode_tenant_id
from core.domain.exceptions import ProviderError


FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _jwt(claims: dict) -> str:
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"header.{payload}.signature"


def _client(handler, logger):
    return MicrosoftOAuthClient(
        client_id="client-1",
        client_secret="secret-1",
        tenant_id="common",
        redirect_uri="https://crm.test/auth/callback",
        scopes=["Mail.Read", "offline_access"],
        logger=logger,
        transport=httpx.MockTransport(handler),
        clock=lambda: FIXED_NOW,
    )


def test_authorization_url_requests_consent(logger):
    url = _client(lambda request: None, logger).get_authorization_url("state-123")

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.path == "/common/oauth2/v2.0/authorize"
    assert query["state"] == ["state-123"]
    assert query["prompt"] == ["consent"]
    assert query["response_type"] == ["code"]
    assert query["scope"] == ["Mail.Read offline_access"]


def test_shared_mailbox_adds_shared_scopes(logger):
    url = _client(lambda request: None, logger).get_authorization_url("s", shared_mailbox=True)

    scopes = parse_qs(urlparse(url).query)["scope"][0].split(" ")
    assert set(SHARED_MAILBOX_SCOPES) <= set(scopes)
    assert "offline_access" in scopes


async def test_exchange_code_returns_token_set(logger):
    forms = []

    def handler(request):
        forms.append(parse_qs(request.content.decode()))
        return httpx.Response(200, json={
            "access_token": _jwt({"tid": "tenant-42"}),
            "refresh_token": "refresh-1",
            "expires_in": 3599,
            "scope": "Mail.Read offline_access",
        })

    token_set = await _client(handler, logger).exchange_code("auth-code")

    assert forms[0]["grant_type"] == ["authorization_code"]
    assert forms[0]["code"] == ["auth-code"]
    assert token_set.refresh_token == "refresh-1"
    assert token_set.tenant_id == "tenant-42"
    assert token_set.scopes == ["Mail.Read", "offline_access"]
    assert token_set.expires_at == FIXED_NOW + timedelta(seconds=3599)


async def test_refresh_keeps_refresh_token_when_not_rotated(logger):
    def handler(request):
        return httpx.Response(200, json={"access_token": "opaque", "expires_in": 3600})

    token_set = await _client(handler, logger).refresh("refresh-1")

    assert token_set.access_token == "opaque"
    assert token_set.refresh_token == "refresh-1"
    assert token_set.tenant_id is None


async def test_token_error_uses_error_description(logger):
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "AADSTS70008: expired"})

    with pytest.raises(ProviderError) as excinfo:
        await _client(handler, logger).refresh("refresh-1")

    assert excinfo.value.status_code == 400
    assert "AADSTS70008" in excinfo.value.message


def test_decode_tenant_id_handles_garbage():
    assert decode_tenant_id(None) is None
    assert decode_tenant_id("not-a-jwt") is None
    assert decode_tenant_id("a.!!!.c") is None
    assert decode_tenant_id(_jwt({"tid": "t1"})) == "t1"
