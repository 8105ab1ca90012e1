"""SyncEngine concurrency and isolation tests with stub units."""

import asyncio
from contextlib import asynccontextmanager
from uuid import uuid4

from core.domain.entities import MailboxSyncReport
from core.domain.exceptions import MailboxSyncAborted, RefreshFailed
from core.usecases.mail_sync import SyncEngine


class StubSyncUnit:
    def __init__(self, tracker, failing):
        self.tracker = tracker
        self.failing = failing

    async def sync_mailbox(self, mailbox_id):
        self.tracker["running"] += 1
        self.tracker["peak"] = max(self.tracker["peak"], self.tracker["running"])
        try:
            await asyncio.sleep(0.01)
            if mailbox_id in self.failing:
                raise MailboxSyncAborted(mailbox_id, RefreshFailed(mailbox_id, ValueError("revoked")))
            return MailboxSyncReport(mailbox_id=mailbox_id)
        finally:
            self.tracker["running"] -= 1


def _unit_factory(tracker, failing=()):
    @asynccontextmanager
    async def unit():
        tracker["opened"] += 1
        yield StubSyncUnit(tracker, set(failing))
        tracker["closed"] += 1

    return unit


def _tracker():
    return {"running": 0, "peak": 0, "opened": 0, "closed": 0}


async def test_concurrency_is_bounded(logger):
    tracker = _tracker()
    engine = SyncEngine(_unit_factory(tracker), logger, max_concurrency=2)
    mailbox_ids = [uuid4() for _ in range(6)]

    outcomes = await engine.sync_all_mailboxes(mailbox_ids)

    assert tracker["peak"] == 2
    assert tracker["opened"] == 6
    assert tracker["closed"] == 6
    assert list(outcomes) == mailbox_ids
    assert all(isinstance(outcome, MailboxSyncReport) for outcome in outcomes.values())


async def test_one_aborted_mailbox_does_not_stop_others(logger):
    tracker = _tracker()
    broken = uuid4()
    healthy = [uuid4(), uuid4()]
    engine = SyncEngine(_unit_factory(tracker, failing=[broken]), logger, max_concurrency=4)

    outcomes = await engine.sync_all_mailboxes([healthy[0], broken, healthy[1]])

    assert isinstance(outcomes[broken], MailboxSyncAborted)
    assert isinstance(outcomes[broken].cause, RefreshFailed)
    assert all(isinstance(outcomes[mailbox_id], MailboxSyncReport) for mailbox_id in healthy)


async def test_empty_mailbox_list(logger):
    engine = SyncEngine(_unit_factory(_tracker()), logger)

    assert await engine.sync_all_mailboxes([]) == {}
