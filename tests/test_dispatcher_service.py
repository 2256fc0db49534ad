"""Tests for the dispatcher: claim, send, retry with backoff, and concurrency."""

import time
from datetime import timedelta
from unittest.mock import patch

import pytest

from hrnotify.catalog import build_event
from hrnotify.database.types import utcnow
from hrnotify.dispatcher.service import Dispatcher, DispatchStatus
from hrnotify.errors import ResolverBusy, TransportError
from hrnotify.queue import service as queue
from hrnotify.queue.models import DedupKey, QueueEntry, QueueStatus


@pytest.fixture
def enqueue_leave(db_session, guard, people, leave_payload):
    """Complete a leave approval through the guard and commit it."""

    def _enqueue(reference_id="LV-1", payload=None, **kwargs):
        event = build_event(
            "leave_approved",
            reference_id,
            payload=leave_payload if payload is None else payload,
            subject_id=people.employee,
            acting_user_id=people.manager,
            **kwargs,
        )
        outcome = guard.on_sub_update(db_session, event, True)
        db_session.commit()
        return db_session.get(QueueEntry, outcome.entry_id)

    return _enqueue


def _later(hours=0):
    return utcnow() + timedelta(seconds=5, hours=hours)


def _enqueue_unresolved(db, people):
    """A system notice whose recipients are resolved by the dispatcher."""
    entry = queue.enqueue(
        db,
        DedupKey("system", "notice-1", "system_notification"),
        recipients={
            "spec": {"to_tags": ["subject"], "cc_dynamic": ["admin"]},
            "context": {"subject_id": str(people.employee)},
            "resolved": None,
        },
        payload={"title": "Office closed", "message": "The office is closed on Friday."},
    )
    db.commit()
    return entry


class TestSend:
    def test_sends_rendered_email(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        outcomes = dispatcher.process_batch(db_session, now=_later())

        assert [(o.entry_id, o.status) for o in outcomes] == [(entry.id, DispatchStatus.SENT)]
        sent = mailer.sent[0]
        assert sent.to == ["eddie.employee@example.com"]
        assert "maria.manager@example.com" not in sent.cc
        assert sent.subject == "Your leave from 02 Nov 2026 to 06 Nov 2026 was approved"
        assert "approved by Maria Manager" in sent.body

        db_session.refresh(entry)
        assert entry.status == QueueStatus.SENT
        assert entry.processed_at is not None
        assert entry.lease_expires_at is None

    def test_sent_entry_never_sent_again(self, db_session, dispatcher, mailer, enqueue_leave):
        enqueue_leave()
        dispatcher.process_batch(db_session, now=_later())
        assert dispatcher.process_batch(db_session, now=_later(hours=5)) == []
        assert len(mailer.sent) == 1

    def test_subject_override(self, db_session, dispatcher, mailer, people, guard, leave_payload):
        event = build_event("leave_approved", "LV-2", payload=leave_payload, subject_id=people.employee)
        event.subject = "Leave approved (corrected dates)"
        guard.on_sub_update(db_session, event, True)
        db_session.commit()
        dispatcher.process_batch(db_session, now=_later())
        assert mailer.sent[0].subject == "Leave approved (corrected dates)"

    def test_resolves_at_send_time_when_not_pre_resolved(self, db_session, dispatcher, mailer, people):
        _enqueue_unresolved(db_session, people)

        outcomes = dispatcher.process_batch(db_session, now=_later())
        assert outcomes[0].status == DispatchStatus.SENT
        assert mailer.sent[0].to == ["eddie.employee@example.com"]
        assert mailer.sent[0].cc == ["ada.admin@example.com"]

    def test_only_pending_can_be_dispatched(self, db_session, dispatcher):
        with pytest.raises(ValueError):
            dispatcher.process_batch(db_session, status_filter=QueueStatus.FAILED)

    def test_batch_limit(self, db_session, dispatcher, mailer, enqueue_leave):
        for i in range(3):
            enqueue_leave(reference_id=f"LV-{i}")
        assert len(dispatcher.process_batch(db_session, limit=2, now=_later())) == 2
        assert len(mailer.sent) == 2


class TestRetries:
    def test_two_timeouts_then_success(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        mailer.failures = [TransportError("connection timed out"), TransportError("connection timed out")]

        statuses = [dispatcher.process_batch(db_session, now=_later(hours=h))[0].status for h in (0, 1, 2)]
        assert statuses == [DispatchStatus.RETRY_SCHEDULED, DispatchStatus.RETRY_SCHEDULED, DispatchStatus.SENT]

        db_session.refresh(entry)
        assert entry.status == QueueStatus.SENT
        assert entry.retry_count == 2
        assert len(entry.error_history) == 2
        assert [r["attempt"] for r in entry.error_history] == [1, 2]
        assert len(mailer.sent) == 1

    def test_retry_waits_for_backoff(self, db_session, dispatcher, mailer, enqueue_leave):
        enqueue_leave()
        mailer.failures = [TransportError("connection timed out")]
        now = _later()
        dispatcher.process_batch(db_session, now=now)
        # first retry is due base * 2 = 120s later
        assert dispatcher.process_batch(db_session, now=now + timedelta(seconds=60)) == []
        assert dispatcher.process_batch(db_session, now=now + timedelta(seconds=121))[0].status == DispatchStatus.SENT

    def test_exhausted_retries_fail_permanently(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        mailer.failures = [TransportError("503 service unavailable") for _ in range(3)]

        statuses = [dispatcher.process_batch(db_session, now=_later(hours=h))[0].status for h in (0, 1, 2)]
        assert statuses == [DispatchStatus.RETRY_SCHEDULED, DispatchStatus.RETRY_SCHEDULED, DispatchStatus.FAILED]
        assert dispatcher.process_batch(db_session, now=_later(hours=10)) == []
        assert mailer.calls == 3

        db_session.refresh(entry)
        assert entry.status == QueueStatus.FAILED
        assert entry.retry_count == 3
        assert len(entry.error_history) == 3

    def test_terminal_transport_error_fails_at_once(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        mailer.failures = [TransportError("550 mailbox unavailable", retryable=False)]
        outcome = dispatcher.process_batch(db_session, now=_later())[0]
        assert outcome.status == DispatchStatus.FAILED
        db_session.refresh(entry)
        assert entry.retry_count == 0

    def test_render_error_is_terminal(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave(payload={"employee_name": "Eddie"})
        outcome = dispatcher.process_batch(db_session, now=_later())[0]
        assert outcome.status == DispatchStatus.FAILED
        assert mailer.calls == 0
        db_session.refresh(entry)
        assert entry.error_history[0]["error_type"] == "RenderError"

    def test_unexpected_error_is_retried(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        mailer.failures = [RuntimeError("socket closed")]
        outcome = dispatcher.process_batch(db_session, now=_later())[0]
        assert outcome.status == DispatchStatus.RETRY_SCHEDULED
        db_session.refresh(entry)
        assert entry.error_history[0]["message"] == "RuntimeError: socket closed"

    def test_busy_resolver_is_retried(self, db_session, dispatcher, mailer, people):
        _enqueue_unresolved(db_session, people)
        with patch(
            "hrnotify.dispatcher.service.resolve_with_timeout",
            side_effect=ResolverBusy("all 8 resolver threads are held by earlier lookups"),
        ):
            outcome = dispatcher.process_batch(db_session, now=_later())[0]
        assert outcome.status == DispatchStatus.RETRY_SCHEDULED
        assert mailer.calls == 0
        entry = db_session.get(QueueEntry, outcome.entry_id)
        assert entry.error_history[0]["error_type"] == "ResolverBusy"

        assert dispatcher.process_batch(db_session, now=_later(hours=1))[0].status == DispatchStatus.SENT

    def test_directory_error_on_resolution_is_terminal(self, db_session, renderer, mailer, static_cc, people):
        class BrokenDirectory:
            def get_person(self, person_id):
                raise ConnectionError("directory unreachable")

        _enqueue_unresolved(db_session, people)
        dispatcher = Dispatcher(BrokenDirectory(), renderer, mailer, static_cc, worker_id="worker-a")
        outcome = dispatcher.process_batch(db_session, now=_later())[0]
        assert outcome.status == DispatchStatus.FAILED
        assert "directory unreachable" in outcome.error
        assert mailer.calls == 0

    def test_requeued_entry_gets_fresh_budget(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave(max_retries=1)
        mailer.failures = [TransportError("timed out")]
        assert dispatcher.process_batch(db_session, now=_later())[0].status == DispatchStatus.FAILED

        assert queue.requeue(db_session, entry.id)
        db_session.commit()
        assert dispatcher.process_batch(db_session, now=_later(hours=1))[0].status == DispatchStatus.SENT


class TestConcurrency:
    def test_interleaved_dispatchers_send_each_entry_once(
        self, db_session, directory, renderer, static_cc, dispatcher, mailer, mailer_factory, enqueue_leave
    ):
        for i in range(3):
            enqueue_leave(reference_id=f"LV-{i}")
        other_mailer = mailer_factory()
        other = Dispatcher(directory, renderer, other_mailer, static_cc, worker_id="worker-b")
        now = _later()

        # worker-b polls while worker-a is mid-send on its first entry
        mailer.on_send = lambda: other.process_batch(db_session, now=now) if not other_mailer.calls else None
        outcomes = dispatcher.process_batch(db_session, now=now)

        assert [o.status for o in outcomes] == [DispatchStatus.SENT, DispatchStatus.SKIPPED, DispatchStatus.SKIPPED]
        assert len(mailer.sent) == 1
        assert len(other_mailer.sent) == 2
        assert db_session.query(QueueEntry).filter(QueueEntry.status == QueueStatus.SENT).count() == 3

    def test_slow_send_does_not_shorten_later_leases(
        self, db_session, directory, renderer, static_cc, mailer, mailer_factory, enqueue_leave
    ):
        enqueue_leave(reference_id="LV-1")
        enqueue_leave(reference_id="LV-2")
        slow = Dispatcher(directory, renderer, mailer, static_cc, worker_id="worker-a", lease_seconds=1)
        other_mailer = mailer_factory()
        other = Dispatcher(directory, renderer, other_mailer, static_cc, worker_id="worker-b", lease_seconds=1)
        polls = []

        def on_send():
            if mailer.calls == 1:
                # longer than the lease: a lease taken at batch start would have run out
                time.sleep(1.3)
            else:
                polls.append(other.process_batch(db_session))

        mailer.on_send = on_send
        outcomes = slow.process_batch(db_session)

        assert [o.status for o in outcomes] == [DispatchStatus.SENT, DispatchStatus.SENT]
        assert polls == [[]]
        assert other_mailer.calls == 0
        assert len(mailer.sent) == 2

    def test_given_now_advances_with_real_time(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        now = _later()
        mailer.on_send = lambda: time.sleep(0.2)
        dispatcher.process_batch(db_session, now=now)
        db_session.refresh(entry)
        assert entry.processed_at >= now + timedelta(seconds=0.2)

    def test_leased_entry_is_skipped_until_lease_expires(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        now = _later()
        assert queue.claim(db_session, entry.id, "worker-b", now, lease_seconds=60)
        db_session.commit()

        assert dispatcher.process_batch(db_session, now=now) == []
        # worker-b crashed; the lease runs out and worker-a picks it up
        outcomes = dispatcher.process_batch(db_session, now=now + timedelta(seconds=61))
        assert outcomes[0].status == DispatchStatus.SENT

    def test_lost_lease_is_not_marked_sent(self, db_session, dispatcher, mailer, enqueue_leave):
        entry = enqueue_leave()
        now = _later()

        def steal():
            db_session.query(QueueEntry).filter(QueueEntry.id == entry.id).update(
                {"claimed_by": "worker-b"}, synchronize_session=False
            )

        mailer.on_send = steal
        outcome = dispatcher.process_batch(db_session, now=now)[0]
        assert outcome.status == DispatchStatus.SKIPPED


class TestCancellation:
    def test_cancelled_entry_never_dispatched(self, db_session, dispatcher, guard, mailer, enqueue_leave):
        enqueue_leave()
        guard.cancel(db_session, "leave", "LV-1")
        db_session.commit()
        assert dispatcher.process_batch(db_session, now=_later()) == []
        assert mailer.calls == 0
