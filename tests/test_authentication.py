"""OAuth connect flow tests with the database-backed state cache."""

import base64
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from adapters.db.repositories import CredentialRepositoryAdapter
from core.domain.exceptions import InvalidOAuthState, ProviderError
from tests.conftest import BUSINESS_ID


def _token_response(refresh_token="refresh-1", tenant="tenant-9"):
    claims = base64.urlsafe_b64encode(json.dumps({"tid": tenant}).encode()).decode().rstrip("=")
    body = {"access_token": f"h.{claims}.s", "expires_in": 3600, "scope": "Mail.Read offline_access"}
    if refresh_token:
        body["refresh_token"] = refresh_token
    return httpx.Response(200, json=body)


async def test_connect_flow_stores_encrypted_credential(factory, session, fake_graph, encryption):
    usecase = factory.create_authentication_usecase(session)

    url, state = await usecase.start_authorization_code_flow(BUSINESS_ID)
    assert parse_qs(urlparse(url).query)["state"] == [state]

    fake_graph.token_responses.append(_token_response())
    credential = await usecase.complete_authorization_code_flow("auth-code", state)

    assert credential.business_id == BUSINESS_ID
    assert credential.tenant_id == "tenant-9"
    assert credential.is_active
    assert await encryption.decrypt(credential.refresh_token) == "refresh-1"
    assert fake_graph.token_forms[0]["code"] == "auth-code"

    active = await CredentialRepositoryAdapter(session).get_active(BUSINESS_ID)
    assert active.id == credential.id


async def test_state_is_single_use(factory, session, fake_graph):
    usecase = factory.create_authentication_usecase(session)
    _, state = await usecase.start_authorization_code_flow(BUSINESS_ID)
    fake_graph.token_responses.append(_token_response())
    await usecase.complete_authorization_code_flow("auth-code", state)

    with pytest.raises(InvalidOAuthState):
        await usecase.complete_authorization_code_flow("auth-code", state)


async def test_unknown_state_is_rejected(factory, session):
    with pytest.raises(InvalidOAuthState):
        await factory.create_authentication_usecase(session).complete_authorization_code_flow("code", "forged")


async def test_missing_refresh_token_is_an_error(factory, session, fake_graph):
    usecase = factory.create_authentication_usecase(session)
    _, state = await usecase.start_authorization_code_flow(BUSINESS_ID)
    fake_graph.token_responses.append(_token_response(refresh_token=None))

    with pytest.raises(ProviderError):
        await usecase.complete_authorization_code_flow("auth-code", state)


async def test_reconnect_reactivates_same_credential(factory, session, fake_graph):
    usecase = factory.create_authentication_usecase(session)

    _, state = await usecase.start_authorization_code_flow(BUSINESS_ID)
    fake_graph.token_responses.append(_token_response())
    first = await usecase.complete_authorization_code_flow("code-1", state)
    await usecase.disconnect(first.id)

    _, state = await usecase.start_authorization_code_flow(BUSINESS_ID)
    fake_graph.token_responses.append(_token_response(refresh_token="refresh-2"))
    second = await usecase.complete_authorization_code_flow("code-2", state)

    assert second.id == first.id
    assert second.is_active
