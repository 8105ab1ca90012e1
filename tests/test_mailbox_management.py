"""Mailbox management, subscriptions and manual linking tests."""

from datetime import timedelta

import pytest

from adapters.db.repositories import EmailRepositoryAdapter, MailboxRepositoryAdapter
from core.domain.entities import Email, EmailDirection, now_utc
from core.domain.exceptions import (
    CredentialNotFound,
    DuplicateMailbox,
    EmailNotFound,
    InvalidLinkTarget,
    MailboxNotFound,
)
from tests.conftest import BUSINESS_ID, MAILBOX_ADDRESS


async def test_attach_mailbox_uses_default_folders(factory, session, credential):
    usecase = factory.create_mailbox_management_usecase(session)

    mailbox = await usecase.attach_mailbox(BUSINESS_ID, "Support@Acme.com")

    assert mailbox.mailbox_address == "support@acme.com"
    assert mailbox.credential_id == credential.id
    assert mailbox.sync_folders == ["Inbox", "Sent Items"]
    assert [m.id for m in await usecase.list_mailboxes(BUSINESS_ID)] == [mailbox.id]


async def test_attach_requires_active_credential(factory, session):
    with pytest.raises(CredentialNotFound):
        await factory.create_mailbox_management_usecase(session).attach_mailbox(BUSINESS_ID, MAILBOX_ADDRESS)


async def test_attach_rejects_duplicate_address(factory, session, mailbox):
    with pytest.raises(DuplicateMailbox):
        await factory.create_mailbox_management_usecase(session).attach_mailbox(BUSINESS_ID, MAILBOX_ADDRESS.upper())


async def test_update_settings(factory, session, mailbox):
    usecase = factory.create_mailbox_management_usecase(session)

    updated = await usecase.update_mailbox_settings(mailbox.id, sync_inbound=False, sync_folders=["Inbox"])

    assert updated.sync_inbound is False
    assert updated.sync_outbound is True
    assert updated.sync_folders == ["Inbox"]

    from uuid import uuid4

    with pytest.raises(MailboxNotFound):
        await usecase.update_mailbox_settings(uuid4(), sync_inbound=True)


async def test_ensure_subscription_creates_then_renews(factory, session, mailbox, fake_graph):
    usecase = factory.create_mailbox_management_usecase(session)

    created = await usecase.ensure_subscription(mailbox.id)

    assert created.webhook_subscription_id == "sub-1"
    subscription = fake_graph.subscriptions["sub-1"]
    assert subscription["notificationUrl"] == "https://mailsync.test/webhooks/notifications"
    assert subscription["resource"] == f"users/{MAILBOX_ADDRESS}/messages"
    assert subscription["clientState"] == "test_client_state"
    assert created.webhook_expires_at > now_utc() + timedelta(days=2)

    renewed = await usecase.ensure_subscription(mailbox.id)

    assert renewed.webhook_subscription_id == "sub-1"
    assert len(fake_graph.calls("PATCH", "/subscriptions/sub-1")) == 1


async def test_missing_remote_subscription_is_recreated(factory, session, mailbox, fake_graph):
    await MailboxRepositoryAdapter(session).set_webhook_subscription(mailbox.id, "sub-gone", now_utc())

    mailbox = await factory.create_mailbox_management_usecase(session).ensure_subscription(mailbox.id)

    assert mailbox.webhook_subscription_id == "sub-1"


async def test_renew_expiring_subscriptions(factory, session, mailbox, fake_graph):
    usecase = factory.create_mailbox_management_usecase(session)
    await usecase.ensure_subscription(mailbox.id)
    await MailboxRepositoryAdapter(session).set_webhook_subscription(
        mailbox.id, "sub-1", now_utc() + timedelta(hours=2)
    )

    renewed, failed = await usecase.renew_expiring_subscriptions(timedelta(hours=24))

    assert (renewed, failed) == (1, 0)
    stored = await MailboxRepositoryAdapter(session).get_by_id(mailbox.id)
    assert stored.webhook_expires_at > now_utc() + timedelta(days=2)

    assert await usecase.renew_expiring_subscriptions(timedelta(hours=24)) == (0, 0)


@pytest.fixture
async def stored_email(session, mailbox):
    email = Email(
        provider_message_id="m1",
        mailbox_id=mailbox.id,
        business_id=BUSINESS_ID,
        direction=EmailDirection.INBOUND,
        from_address="bob@client.com",
        contact_id="contact-bob",
        auto_linked=True,
    )
    await EmailRepositoryAdapter(session).create_if_absent(email)
    return email


async def test_manual_link_overrides_and_clears_auto_flag(factory, session, crm_records, stored_email):
    usecase = factory.create_email_link_usecase(session)

    linked = await usecase.link_email(stored_email.id, BUSINESS_ID, {"deal_id": "deal-bob", "company_id": None})

    assert linked.deal_id == "deal-bob"
    assert linked.company_id is None
    assert linked.contact_id == "contact-bob"
    assert linked.auto_linked is False


async def test_manual_link_rejects_records_of_other_business(factory, session, crm_records, stored_email):
    usecase = factory.create_email_link_usecase(session)

    with pytest.raises(InvalidLinkTarget):
        await usecase.link_email(stored_email.id, BUSINESS_ID, {"company_id": "company-other"})

    with pytest.raises(EmailNotFound):
        await usecase.link_email(stored_email.id, "biz-2", {"contact_id": "contact-foreign"})
