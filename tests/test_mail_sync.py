"""Mailbox sync tests against the in-memory database and FakeGraph."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from adapters.db.models import EmailModel
from adapters.db.repositories import CredentialRepositoryAdapter, MailboxRepositoryAdapter
from core.domain.entities import FolderSyncState, MailboxSyncStatus, SyncMode
from core.domain.exceptions import MailboxNotFound, MailboxSyncAborted, RefreshFailed
from tests.conftest import MAILBOX_ADDRESS, make_message


@pytest.fixture
def acme_graph(fake_graph):
    """Inbox with two messages, Sent Items with one, and an unselected Archive folder."""
    fake_graph.add_folder("inbox", "Inbox", [
        make_message("m1", "bob@client.com", [MAILBOX_ADDRESS], subject="Proposal"),
        make_message("m2", "stranger@nowhere.com", [MAILBOX_ADDRESS], subject="Cold pitch"),
    ])
    fake_graph.add_folder("sent", "Sent Items", [
        make_message("m3", MAILBOX_ADDRESS, ["carol@other.com"], subject="Follow up"),
    ])
    fake_graph.add_folder("archive", "Archive", [
        make_message("m4", "bob@client.com", [MAILBOX_ADDRESS], subject="Old thread"),
    ])
    return fake_graph


async def _emails(session):
    result = await session.execute(select(EmailModel).order_by(EmailModel.provider_message_id))
    return result.scalars().all()


async def test_first_sync_imports_selected_folders_and_links_contacts(
    factory, session, mailbox, crm_records, acme_graph
):
    usecase = factory.create_mail_sync_usecase(session)

    report = await usecase.sync_mailbox(mailbox.id)

    assert report.imported == 3
    assert report.is_complete_success()
    assert {folder.folder_name for folder in report.folders} == {"Inbox", "Sent Items"}
    assert all(folder.mode == SyncMode.FULL for folder in report.folders)

    emails = {email.provider_message_id: email for email in await _emails(session)}
    assert set(emails) == {"m1", "m2", "m3"}

    assert emails["m1"].direction == "INBOUND"
    assert emails["m1"].contact_id == "contact-bob"
    assert emails["m1"].company_id == "company-1"
    assert emails["m1"].deal_id == "deal-bob"
    assert emails["m1"].auto_linked is True

    assert emails["m2"].contact_id is None
    assert emails["m2"].auto_linked is False

    assert emails["m3"].direction == "OUTBOUND"
    assert emails["m3"].contact_id == "contact-carol"
    assert emails["m3"].deal_id is None

    stored = await MailboxRepositoryAdapter(session).get_by_id(mailbox.id)
    assert stored.last_sync_at is not None
    assert stored.sync_status == MailboxSyncStatus.ACTIVE
    assert stored.delta_sync_tokens == {
        "inbox": acme_graph.delta_link("inbox"),
        "sent": acme_graph.delta_link("sent"),
    }


async def test_second_sync_uses_delta_and_does_not_duplicate(factory, session, mailbox, crm_records, acme_graph):
    usecase = factory.create_mail_sync_usecase(session)
    await usecase.sync_mailbox(mailbox.id)

    acme_graph.delta_changes["inbox"] = {
        "value": [
            make_message("m1", "bob@client.com", [MAILBOX_ADDRESS], subject="Proposal"),
            make_message("m5", "dave@client.com", [MAILBOX_ADDRESS], subject="New question"),
            {"id": "m2", "@removed": {"reason": "deleted"}},
        ],
        "@odata.deltaLink": acme_graph.delta_link("inbox", 2),
    }

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert all(folder.mode == SyncMode.DELTA for folder in report.folders)
    inbox = next(folder for folder in report.folders if folder.folder_id == "inbox")
    assert inbox.imported == 1
    assert inbox.skipped == 1
    assert inbox.deleted == 1

    emails = {email.provider_message_id: email for email in await _emails(session)}
    assert set(emails) == {"m1", "m3", "m5"}
    # Dave has no deals of his own, Client Co has exactly one open deal
    assert emails["m5"].contact_id == "contact-dave"
    assert emails["m5"].deal_id == "deal-bob"

    stored = await MailboxRepositoryAdapter(session).get_by_id(mailbox.id)
    assert stored.delta_token_for("inbox") == acme_graph.delta_link("inbox", 2)

    # The stored delta link is replayed as-is
    replayed = [request for request in acme_graph.calls("GET", "/messages/delta") if request.url.params.get("$deltatoken")]
    assert {request.url.params["$deltatoken"] for request in replayed} == {"inbox-1", "sent-1"}


async def test_expired_delta_link_falls_back_to_full_sync(factory, session, mailbox, acme_graph):
    await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    acme_graph.expired_delta_folders.add("inbox")
    acme_graph.messages["inbox"].append(
        make_message("m6", "carol@other.com", [MAILBOX_ADDRESS], subject="Missed while expired")
    )

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    inbox = next(folder for folder in report.folders if folder.folder_id == "inbox")
    sent = next(folder for folder in report.folders if folder.folder_id == "sent")
    assert inbox.mode == SyncMode.FULL
    assert inbox.state == FolderSyncState.IDLE
    assert inbox.imported == 1
    assert inbox.skipped == 2
    assert sent.mode == SyncMode.DELTA
    assert report.is_complete_success()

    stored = await MailboxRepositoryAdapter(session).get_by_id(mailbox.id)
    assert stored.delta_token_for("inbox") == acme_graph.delta_link("inbox")
    assert stored.delta_token_for("sent") == acme_graph.delta_link("sent", 2)


async def test_folder_failure_is_isolated_and_keeps_last_sync_at(factory, session, mailbox, acme_graph):
    acme_graph.failing_paths[f"{acme_graph.user_path}/mailFolders/sent/messages"] = httpx.Response(
        503, json={"error": {"message": "Service Unavailable"}}
    )

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert report.failed_folders == ["Sent Items"]
    assert not report.is_complete_success()
    sent = next(folder for folder in report.folders if folder.folder_id == "sent")
    assert sent.state == FolderSyncState.ERROR
    assert "Service Unavailable" in sent.error

    emails = await _emails(session)
    assert {email.provider_message_id for email in emails} == {"m1", "m2"}

    stored = await MailboxRepositoryAdapter(session).get_by_id(mailbox.id)
    assert stored.last_sync_at is None
    assert stored.sync_status == MailboxSyncStatus.ACTIVE
    assert stored.delta_token_for("inbox") is not None
    assert stored.delta_token_for("sent") is None


async def test_folder_listing_failure_is_reported(factory, session, mailbox, acme_graph):
    acme_graph.failing_paths[f"{acme_graph.user_path}/mailFolders"] = httpx.Response(
        500, json={"error": {"message": "boom"}}
    )

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert report.folders == []
    assert "boom" in report.error
    stored = await MailboxRepositoryAdapter(session).get_by_id(mailbox.id)
    assert stored.last_sync_at is None


async def test_direction_filter_skips_outbound(factory, session, mailbox, acme_graph):
    await MailboxRepositoryAdapter(session).update_settings(mailbox.id, sync_outbound=False)

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert report.imported == 2
    emails = await _emails(session)
    assert {email.provider_message_id for email in emails} == {"m1", "m2"}


async def test_refresh_failure_aborts_mailbox(factory, session, mailbox, credential, acme_graph):
    # Provider rejects the stored token and the refresh grant fails
    acme_graph.valid_tokens = {"access-2"}
    acme_graph.token_responses.append(
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "refresh token revoked"})
    )

    with pytest.raises(MailboxSyncAborted) as excinfo:
        await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert isinstance(excinfo.value.cause, RefreshFailed)

    stored = await MailboxRepositoryAdapter(session).get_by_id(mailbox.id)
    assert stored.sync_status == MailboxSyncStatus.ERROR

    stored_credential = await CredentialRepositoryAdapter(session).get_by_id(credential.id)
    assert stored_credential.is_active is False

    count = await session.scalar(select(func.count()).select_from(EmailModel))
    assert count == 0


async def test_rejected_token_is_refreshed_once_and_sync_continues(factory, session, mailbox, acme_graph):
    acme_graph.valid_tokens = {"access-2"}
    acme_graph.token_responses.append(
        httpx.Response(200, json={
            "access_token": "access-2",
            "refresh_token": "refresh-2",
            "expires_in": 3600,
            "scope": "Mail.Read offline_access",
        })
    )

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert report.imported == 3
    assert len(acme_graph.token_forms) == 1
    assert acme_graph.token_forms[0]["grant_type"] == "refresh_token"
    assert acme_graph.token_forms[0]["refresh_token"] == "refresh-1"


async def test_folder_timeout_marks_folder_failed(factory, session, mailbox, acme_graph, monkeypatch):
    usecase = factory.create_mail_sync_usecase(session)
    usecase.folder_timeout = 0.01

    original = usecase._full_sync

    async def slow_full_sync(mailbox_, provider, folder, result):
        if folder.id == "inbox":
            await asyncio.sleep(1)
        await original(mailbox_, provider, folder, result)

    monkeypatch.setattr(usecase, "_full_sync", slow_full_sync)

    report = await usecase.sync_mailbox(mailbox.id)

    assert report.failed_folders == ["Inbox"]
    sent = next(folder for folder in report.folders if folder.folder_id == "sent")
    assert sent.imported == 1


async def test_unknown_mailbox_raises(factory, session):
    from uuid import uuid4

    with pytest.raises(MailboxNotFound):
        await factory.create_mail_sync_usecase(session).sync_mailbox(uuid4())


def _bulk_messages(count: int, start: datetime) -> list:
    return [
        make_message(
            f"bulk-{index}",
            "stranger@nowhere.com",
            [MAILBOX_ADDRESS],
            received=(start + timedelta(minutes=index)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
        for index in range(count)
    ]


async def test_full_sync_of_a_large_folder_only_walks_the_recent_window(factory, session, mailbox, fake_graph):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    fake_graph.add_folder("inbox", "Inbox", _bulk_messages(5000, start))
    fake_graph.delta_page_size = 10

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert report.is_complete_success()
    assert report.imported == 100
    assert len(fake_graph.calls("GET", "/mailFolders/inbox/messages")) == 1

    delta_requests = fake_graph.calls("GET", "/messages/delta")
    assert len(delta_requests) == 10
    oldest_kept = (start + timedelta(minutes=4900)).strftime("%Y-%m-%dT%H:%M:%SZ")
    assert delta_requests[0].url.params["$filter"] == f"receivedDateTime ge {oldest_kept}"

    emails = await _emails(session)
    assert {email.provider_message_id for email in emails} == {f"bulk-{index}" for index in range(4900, 5000)}

    # the stored link keeps the window, so the next pass only sees the new arrival
    fake_graph.messages["inbox"].append(
        make_message("bulk-new", "stranger@nowhere.com", [MAILBOX_ADDRESS], received="2024-02-01T00:00:00Z")
    )
    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    inbox = report.folders[0]
    assert inbox.mode == SyncMode.DELTA
    assert (inbox.imported, inbox.skipped) == (1, 0)


async def test_delta_resume_matches_a_later_baseline(factory, session, mailbox, acme_graph):
    acme_graph.delta_page_size = 1
    provider = factory.create_mail_provider_factory(session)(mailbox)

    baseline = await provider.delta_messages("inbox")

    inbox = acme_graph.messages["inbox"]
    inbox[0] = make_message("m1", "bob@client.com", [MAILBOX_ADDRESS], subject="Proposal v2")
    del inbox[1]
    inbox.append(make_message("m7", "carol@other.com", [MAILBOX_ADDRESS], subject="Fresh"))

    resumed = await provider.delta_messages("inbox", baseline.delta_link)
    later = await provider.delta_messages("inbox")

    state = {item["id"]: item for item in baseline.items}
    state.update({item["id"]: item for item in resumed.items})
    for message_id in resumed.deleted_ids:
        state.pop(message_id)

    assert resumed.deleted_ids == ["m2"]
    assert state == {item["id"]: item for item in later.items}
    assert state["m1"]["subject"] == "Proposal v2"


async def test_delta_sync_leaves_the_same_emails_as_the_provider(factory, session, mailbox, acme_graph):
    await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    inbox = acme_graph.messages["inbox"]
    del inbox[1]
    inbox.append(make_message("m8", "carol@other.com", [MAILBOX_ADDRESS], subject="Late reply"))

    report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox.id)

    assert all(folder.mode == SyncMode.DELTA for folder in report.folders)
    provider_ids = {
        message["id"]
        for folder_id in ("inbox", "sent")
        for message in acme_graph.messages[folder_id]
    }
    assert {email.provider_message_id for email in await _emails(session)} == provider_ids == {"m1", "m3", "m8"}
