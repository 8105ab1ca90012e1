"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with all tables (one per test)
- FakeGraph: an httpx MockTransport handler that plays Microsoft Graph and the token endpoint
- AdapterFactory wired to the fake transport
- Seed helpers for credentials, mailboxes and CRM records
"""

import copy
import json
import re
from datetime import timedelta
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlencode

import httpx
import pytest

from adapters.db.database import DatabaseAdapter
from adapters.db.models import CompanyModel, ContactModel, DealModel
from adapters.db.repositories import CredentialRepositoryAdapter, MailboxRepositoryAdapter
from adapters.external.encryption_service import EncryptionServiceAdapter
from adapters.factory import AdapterFactory
from adapters.logger import LoggerAdapter
from config.adapters import TestingConfig
from core.domain.entities import Credential, Mailbox, now_utc
from core.usecases.message_processor import parse_timestamp


GRAPH_HOST = "https://graph.microsoft.com"
GRAPH_PREFIX = "/v1.0"
MAILBOX_ADDRESS = "sales@acme.com"
BUSINESS_ID = "biz-1"

_RECEIVED_FILTER = re.compile(r"receivedDateTime ge (\S+)")


def make_message(
    message_id: str,
    sender: str,
    to: List[str],
    subject: str = "Hello",
    received: str = "2024-03-01T10:00:00Z",
    body: Optional[str] = None,
    content_type: str = "text",
) -> dict:
    """Graph message payload as returned by /messages."""
    return {
        "id": message_id,
        "conversationId": f"conv-{message_id}",
        "subject": subject,
        "bodyPreview": "",
        "body": {"contentType": content_type, "content": body or f"Body of {subject}"},
        "from": {"emailAddress": {"address": sender, "name": sender.split("@")[0].title()}},
        "toRecipients": [{"emailAddress": {"address": address}} for address in to],
        "ccRecipients": [],
        "hasAttachments": False,
        "sentDateTime": received,
        "receivedDateTime": received,
    }


def _select(message: dict, fields: Optional[List[str]]) -> dict:
    if not fields:
        return message
    return {key: value for key, value in message.items() if key in fields or key == "id"}


class FakeGraph:
    """In-memory Microsoft Graph used through httpx.MockTransport."""

    def __init__(self, mailbox_address: str = MAILBOX_ADDRESS):
        self.user_path = f"{GRAPH_PREFIX}/users/{mailbox_address}"
        self.folders: List[dict] = []
        self.messages: Dict[str, List[dict]] = {}
        # folder id -> response for a request that carries a $deltatoken
        self.delta_changes: Dict[str, dict] = {}
        # folders whose stored delta link the provider no longer accepts (410)
        self.expired_delta_folders = set()
        self.failing_paths: Dict[str, httpx.Response] = {}
        self.valid_tokens = {"access-1"}
        self.subscriptions: Dict[str, dict] = {}
        self.token_responses: List[httpx.Response] = []
        self.token_forms: List[dict] = []
        self.requests: List[httpx.Request] = []
        # delta answers are split into pages of this size
        self.delta_page_size = 50
        self._delta_pages: Dict[str, dict] = {}
        # delta token -> (received_since, messages by id) as of the walk that issued it
        self._delta_states: Dict[str, tuple] = {}
        self._walk_count = 0

    def add_folder(self, folder_id: str, name: str, messages: Optional[List[dict]] = None) -> None:
        self.folders.append({"id": folder_id, "displayName": name})
        self.messages[folder_id] = list(messages or [])

    def delta_link(self, folder_id: str, version: int = 1) -> str:
        return (
            f"https://graph.microsoft.com{self.user_path}/mailFolders/{folder_id}"
            f"/messages/delta?$deltatoken={folder_id}-{version}"
        )

    def calls(self, method: str, path_suffix: str) -> List[httpx.Request]:
        return [
            request for request in self.requests
            if request.method == method and request.url.path.endswith(path_suffix)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "login.microsoftonline.com":
            return self._token(request)

        if path in self.failing_paths:
            return self.failing_paths[path]

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in self.valid_tokens:
            return httpx.Response(401, json={"error": {"code": "InvalidAuthenticationToken", "message": "expired"}})

        if path == f"{self.user_path}/mailFolders":
            return httpx.Response(200, json={"value": self.folders})

        if path.startswith(f"{self.user_path}/mailFolders/"):
            folder_id, _, rest = path[len(f"{self.user_path}/mailFolders/"):].partition("/")
            if rest == "messages":
                return self._list_messages(request, folder_id)
            if rest == "messages/delta":
                return self._delta(request, folder_id)

        if path.startswith(f"{self.user_path}/messages/"):
            message_id = path.rsplit("/", 1)[-1]
            for messages in self.messages.values():
                for message in messages:
                    if message["id"] == message_id:
                        return httpx.Response(200, json=message)
            return httpx.Response(404, json={"error": {"message": "not found"}})

        if path == f"{GRAPH_PREFIX}/subscriptions" and request.method == "POST":
            return self._create_subscription(request)

        if path.startswith(f"{GRAPH_PREFIX}/subscriptions/"):
            subscription_id = path.rsplit("/", 1)[-1]
            if subscription_id not in self.subscriptions:
                return httpx.Response(404, json={"error": {"message": "subscription not found"}})
            if request.method == "DELETE":
                del self.subscriptions[subscription_id]
                return httpx.Response(204)
            self.subscriptions[subscription_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.subscriptions[subscription_id])

        return httpx.Response(404, json={"error": {"message": f"unexpected {request.method} {path}"}})

    def _list_messages(self, request: httpx.Request, folder_id: str) -> httpx.Response:
        params = request.url.params
        messages = list(self.messages.get(folder_id, []))
        if params.get("$orderby") == "receivedDateTime desc":
            messages.sort(key=lambda message: message.get("receivedDateTime", ""), reverse=True)

        skip = int(params.get("$skip", 0))
        top = int(params.get("$top", len(messages) or 1))
        fields = params.get("$select", "").split(",") if params.get("$select") else None

        body = {"value": [_select(message, fields) for message in messages[skip:skip + top]]}
        if skip + top < len(messages):
            next_params = dict(params)
            next_params["$skip"] = str(skip + top)
            body["@odata.nextLink"] = f"{GRAPH_HOST}{request.url.path}?{urlencode(next_params)}"
        return httpx.Response(200, json=body)

    def _delta(self, request: httpx.Request, folder_id: str) -> httpx.Response:
        params = request.url.params

        if params.get("$skiptoken"):
            return httpx.Response(200, json=self._delta_pages.pop(params["$skiptoken"]))

        token = params.get("$deltatoken")
        if token:
            if folder_id in self.expired_delta_folders:
                return httpx.Response(410, json={"error": {"code": "SyncStateNotFound", "message": "gone"}})
            if folder_id in self.delta_changes:
                return httpx.Response(200, json=self.delta_changes[folder_id])
            return self._resume(folder_id, token)

        match = _RECEIVED_FILTER.search(params.get("$filter", ""))
        received_since = parse_timestamp(match.group(1)) if match else None
        current = self._snapshot(folder_id, received_since)
        return self._walk(folder_id, list(current.values()), 1, received_since, current)

    def _resume(self, folder_id: str, token: str) -> httpx.Response:
        version = int(token.rsplit("-", 1)[1])
        received_since, previous = self._delta_states.get(token, (None, None))
        current = self._snapshot(folder_id, received_since)
        if previous is None:
            # link not issued here: report no changes
            previous = current

        changed = [message for message_id, message in current.items() if previous.get(message_id) != message]
        removed = [
            {"id": message_id, "@removed": {"reason": "deleted"}}
            for message_id in previous if message_id not in current
        ]
        return self._walk(folder_id, changed + removed, version + 1, received_since, current)

    def _snapshot(self, folder_id: str, received_since) -> Dict[str, dict]:
        return {
            message["id"]: copy.deepcopy(message)
            for message in self.messages.get(folder_id, [])
            if received_since is None or parse_timestamp(message["receivedDateTime"]) >= received_since
        }

    def _walk(self, folder_id: str, items: List[dict], version: int, received_since, state: Dict[str, dict]) -> httpx.Response:
        """Split a delta answer into pages chained by $skiptoken next links."""
        self._delta_states[f"{folder_id}-{version}"] = (received_since, state)
        self._walk_count += 1

        size = self.delta_page_size
        bodies = [{"value": items[start:start + size]} for start in range(0, len(items), size)] or [{"value": []}]
        for index in range(len(bodies) - 1):
            key = f"walk{self._walk_count}-{index + 1}"
            bodies[index]["@odata.nextLink"] = (
                f"{GRAPH_HOST}{self.user_path}/mailFolders/{folder_id}/messages/delta?$skiptoken={key}"
            )
            self._delta_pages[key] = bodies[index + 1]
        bodies[-1]["@odata.deltaLink"] = self.delta_link(folder_id, version)
        return httpx.Response(200, json=bodies[0])

    def _create_subscription(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        subscription_id = f"sub-{len(self.subscriptions) + 1}"
        subscription = {"id": subscription_id, **payload}
        self.subscriptions[subscription_id] = subscription
        return httpx.Response(201, json=subscription)

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.token_forms.append({key: values[0] for key, values in parse_qs(request.content.decode()).items()})
        if self.token_responses:
            return self.token_responses.pop(0)
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "no token response"})


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def test_config() -> TestingConfig:
    return TestingConfig()


@pytest.fixture
def logger():
    return LoggerAdapter(name="mailsync.test", level="DEBUG")


@pytest.fixture
def encryption(test_config, logger) -> EncryptionServiceAdapter:
    return EncryptionServiceAdapter(test_config.get_encryption_key(), logger)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def database(test_config):
    db = DatabaseAdapter(test_config)
    await db.initialize()
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
async def session(database):
    async with database.get_session() as session:
        yield session


# =============================================================================
# Graph / Factory Fixtures
# =============================================================================

@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def factory(test_config, fake_graph) -> AdapterFactory:
    return AdapterFactory(config=test_config, transport=httpx.MockTransport(fake_graph.handler))


# =============================================================================
# Seed Fixtures
# =============================================================================

@pytest.fixture
async def credential(session, encryption) -> Credential:
    """Active credential whose access token stays valid for an hour."""
    repository = CredentialRepositoryAdapter(session)
    return await repository.upsert(
        Credential(
            business_id=BUSINESS_ID,
            tenant_id="tenant-1",
            client_id="test_client_id",
            access_token=await encryption.encrypt("access-1"),
            refresh_token=await encryption.encrypt("refresh-1"),
            token_expires_at=now_utc() + timedelta(hours=1),
            scopes=["Mail.Read", "offline_access"],
        )
    )


@pytest.fixture
async def mailbox(session, credential) -> Mailbox:
    repository = MailboxRepositoryAdapter(session)
    return await repository.create(
        Mailbox(
            credential_id=credential.id,
            business_id=BUSINESS_ID,
            mailbox_address=MAILBOX_ADDRESS,
            sync_folders=["Inbox", "Sent Items"],
        )
    )


@pytest.fixture
async def crm_records(session):
    """
    Client Co with Bob (one open deal) and Carol without a company.
    Dave works at Client Co and has no deals of his own.
    """
    session.add_all([
        CompanyModel(id="company-1", business_id=BUSINESS_ID, name="Client Co"),
        CompanyModel(id="company-other", business_id="biz-2", name="Other Business Co"),
    ])
    await session.flush()
    session.add_all([
        ContactModel(id="contact-bob", business_id=BUSINESS_ID, email="Bob@Client.com", company_id="company-1"),
        ContactModel(id="contact-carol", business_id=BUSINESS_ID, email="carol@other.com"),
        ContactModel(id="contact-dave", business_id=BUSINESS_ID, email="dave@client.com", company_id="company-1"),
        ContactModel(id="contact-foreign", business_id="biz-2", email="stranger@nowhere.com"),
    ])
    await session.flush()
    session.add_all([
        DealModel(id="deal-bob", business_id=BUSINESS_ID, contact_id="contact-bob", company_id="company-1", stage="PROPOSAL"),
        DealModel(id="deal-bob-won", business_id=BUSINESS_ID, contact_id="contact-bob", stage="CLOSED_WON"),
    ])
    await session.commit()
