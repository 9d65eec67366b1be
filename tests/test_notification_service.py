from __future__ import annotations

import pytest
from sqlalchemy import select

from gigledger.domain.notifications import ConnectionRequestPayload, ProposalRejectedPayload
from gigledger.errors import NotFound, Unauthorized
from gigledger.models import NotificationOutbox
from gigledger.services.notification_service import NotificationDispatcher
from gigledger.services.unit_of_work import UnitOfWork

from conftest import BIDDER, OWNER


def _payload(proposal_id="p-1"):
    return ProposalRejectedPayload(gig_id="g-1", gig_title="Mix my EP", proposal_id=proposal_id)


def test_emit_serializes_payload_in_camel_case(ledger):
    notification = ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload())

    assert notification.is_read is False
    assert notification.payload == {
        "type": "proposal_rejected",
        "gigId": "g-1",
        "gigTitle": "Mix my EP",
        "proposalId": "p-1",
    }


def test_emit_accepts_raw_mappings(ledger):
    notification = ledger.dispatcher.emit(
        OWNER, "connection_request", {"requesterId": BIDDER, "requesterName": "Ben"}
    )

    assert notification.type == "connection_request"
    assert notification.payload["requesterName"] == "Ben"


def test_emit_deduplicates_within_window(ledger):
    first = ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload())
    second = ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload())

    assert second.notification_id == first.notification_id
    assert len(ledger.dispatcher.list_for(BIDDER)) == 1

    ledger.clock.advance(seconds=ledger.settings.notification_dedupe_window_seconds + 1)
    third = ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload())

    assert third.notification_id != first.notification_id
    assert len(ledger.dispatcher.list_for(BIDDER)) == 2


def test_dedupe_is_scoped_to_recipient_and_subject(ledger):
    ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload("p-1"))
    ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload("p-2"))
    ledger.dispatcher.emit(OWNER, "proposal_rejected", _payload("p-1"))

    assert len(ledger.dispatcher.list_for(BIDDER)) == 2
    assert len(ledger.dispatcher.list_for(OWNER)) == 1


def test_list_for_is_newest_first(ledger):
    for proposal_id in ("p-1", "p-2", "p-3"):
        ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload(proposal_id))

    items = ledger.dispatcher.list_for(BIDDER)

    assert [item.payload["proposalId"] for item in items] == ["p-3", "p-2", "p-1"]
    assert len(ledger.dispatcher.list_for(BIDDER, limit=2)) == 2


def test_mark_read_and_unread_counts(ledger):
    first = ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload("p-1"))
    ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload("p-2"))
    ledger.dispatcher.emit(BIDDER, "proposal_rejected", _payload("p-3"))
    assert ledger.dispatcher.unread_count(BIDDER) == 3

    with pytest.raises(Unauthorized):
        ledger.dispatcher.mark_read(first.notification_id, OWNER)
    with pytest.raises(NotFound):
        ledger.dispatcher.mark_read("missing", BIDDER)

    read = ledger.dispatcher.mark_read(first.notification_id, BIDDER)
    assert read.is_read is True
    assert ledger.dispatcher.unread_count(BIDDER) == 2
    assert len(ledger.dispatcher.list_for(BIDDER, unread_only=True)) == 2

    assert ledger.dispatcher.mark_all_read(BIDDER) == 2
    assert ledger.dispatcher.unread_count(BIDDER) == 0
    assert ledger.dispatcher.mark_all_read(BIDDER) == 0


def test_failed_delivery_stays_pending_until_redelivered(ledger, make_gig, monkeypatch):
    gig_id = make_gig()
    real_emit = ledger.dispatcher._emit

    def broken_emit(*args, **kwargs):
        raise RuntimeError("inbox offline")

    monkeypatch.setattr(ledger.dispatcher, "_emit", broken_emit)
    proposal = ledger.proposals.submit_proposal(gig_id, BIDDER, "hello")

    # The state change committed even though its notification did not land.
    assert proposal.status == "pending"
    assert ledger.dispatcher.list_for(OWNER) == []
    with ledger.session() as session:
        [event] = session.execute(select(NotificationOutbox)).scalars().all()
        assert event.delivered_at is None
        assert event.attempts == 1
        assert "inbox offline" in event.last_error

    monkeypatch.setattr(ledger.dispatcher, "_emit", real_emit)
    assert ledger.dispatcher.deliver_pending() == 1
    assert ledger.dispatcher.deliver_pending() == 0

    [notification] = ledger.dispatcher.list_for(OWNER)
    assert notification.type == "proposal_submitted"
    with ledger.session() as session:
        [event] = session.execute(select(NotificationOutbox)).scalars().all()
        assert event.delivered_at is not None
        assert event.notification_id == notification.notification_id
        assert event.last_error is None


def test_deliver_is_exactly_once_per_outbox_row(ledger):
    with ledger.uow.session_scope() as session:
        outbox_id = ledger.dispatcher.enqueue(
            session, OWNER, ConnectionRequestPayload(requester_id=BIDDER)
        )

    assert ledger.dispatcher.deliver([outbox_id]) == 1
    assert ledger.dispatcher.deliver([outbox_id]) == 0
    assert ledger.dispatcher.deliver(["missing"]) == 0
    assert len(ledger.dispatcher.list_for(OWNER)) == 1


def test_deliver_pending_respects_batch_size(ledger):
    with ledger.uow.session_scope() as session:
        for index in range(3):
            ledger.dispatcher.enqueue(
                session, OWNER, ConnectionRequestPayload(requester_id=f"user-{index}")
            )

    assert ledger.dispatcher.deliver_pending(limit=2) == 2
    assert ledger.dispatcher.deliver_pending(limit=2) == 1
    assert ledger.dispatcher.unread_count(OWNER) == 3


def _enqueue(ledger, requester_id):
    with ledger.uow.session_scope() as session:
        return ledger.dispatcher.enqueue(
            session, OWNER, ConnectionRequestPayload(requester_id=requester_id)
        )


def test_overlapping_deliveries_of_one_row_land_once(ledger, monkeypatch):
    # Without the dedupe window only the outbox row itself can stop a second insert.
    settings = ledger.settings.model_copy(update={"notification_dedupe_window_seconds": 0})
    sweeper = NotificationDispatcher(
        UnitOfWork(ledger.session_factory, settings=settings, sleep=lambda _: None),
        clock=ledger.clock,
    )
    rival = NotificationDispatcher(
        UnitOfWork(ledger.session_factory, settings=settings, sleep=lambda _: None),
        clock=ledger.clock,
    )
    outbox_id = _enqueue(ledger, BIDDER)
    real_emit = sweeper._emit
    raced: list[str] = []

    def racing_emit(session, recipient_id, payload):
        if not raced:
            raced.append(outbox_id)
            # The sweeper has loaded the undelivered row; the rival delivers it first.
            assert rival.deliver([outbox_id]) == 1
        return real_emit(session, recipient_id, payload)

    monkeypatch.setattr(sweeper, "_emit", racing_emit)

    assert sweeper.deliver([outbox_id]) == 0
    assert raced == [outbox_id]
    assert len(ledger.dispatcher.list_for(OWNER)) == 1
    with ledger.session() as session:
        event = session.get(NotificationOutbox, outbox_id)
        assert event.delivered_at is not None
        assert event.attempts == 1
        assert event.last_error is None


def test_redelivery_gives_up_after_max_attempts(ledger):
    stuck = _enqueue(ledger, "user-stuck")
    _enqueue(ledger, "user-fresh")
    with ledger.uow.session_scope() as session:
        event = session.get(NotificationOutbox, stuck)
        event.attempts = ledger.settings.notification_max_delivery_attempts

    assert ledger.dispatcher.deliver_pending() == 1
    assert ledger.dispatcher.deliver_pending() == 0

    [notification] = ledger.dispatcher.list_for(OWNER)
    assert notification.payload["requesterId"] == "user-fresh"
    with ledger.session() as session:
        assert session.get(NotificationOutbox, stuck).delivered_at is None


def test_failing_rows_do_not_starve_newer_events(ledger):
    failing = _enqueue(ledger, "user-failing")
    _enqueue(ledger, "user-fresh")
    with ledger.uow.session_scope() as session:
        session.get(NotificationOutbox, failing).attempts = 2

    assert ledger.dispatcher.deliver_pending(limit=1) == 1

    [notification] = ledger.dispatcher.list_for(OWNER)
    assert notification.payload["requesterId"] == "user-fresh"
