"""Tests for NotificationService: queueing, lookups, stats and lifecycle."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from modules.notifier.errors import CapacityExceeded, InvalidRecipient, InvalidRequest
from shared.schemas.notifications import NotificationRequest, Recipient


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

class TestSend:
    def test_channel_record_defaults(self, clock, service):
        notification_id = service.send_to_channel(1001, "Wager placed")

        record = service.get_status(notification_id)
        assert notification_id.startswith("notif_")
        assert record.status == "pending"
        assert record.type == "custom"
        assert record.priority == "medium"
        assert record.recipient == Recipient(channel_id=1001)
        assert record.content.text == "Wager placed"
        assert record.metadata.created_at == clock.now()
        assert record.metadata.retry_count == 0
        assert record.metadata.max_retries == 3
        assert service.get_stats().total_queued == 1

    def test_handle_record(self, service):
        notification_id = service.send_to_handle("@ops_team", "Deploy done", type="system_alert", priority="high")

        record = service.get_status(notification_id)
        assert record.recipient == Recipient(handle="@ops_team")
        assert record.type == "system_alert"
        assert record.priority == "high"

    def test_ids_are_unique(self, service):
        ids = {service.send_to_channel(1, "x") for _ in range(50)}
        assert len(ids) == 50

    def test_max_retries_follows_config(self, make_service):
        service = make_service(max_retries=5)
        notification_id = service.send_to_channel(1, "x")
        assert service.get_status(notification_id).metadata.max_retries == 5

    def test_invalid_handle_rejected(self, service):
        with pytest.raises(InvalidRecipient):
            service.send_to_handle("@", "x")
        assert len(service.store) == 0
        assert service.get_stats().total_queued == 0

    def test_capacity_exceeded(self, make_service):
        service = make_service(queue_size=2)
        service.send_to_channel(1, "a")
        service.send_to_channel(2, "b")

        with pytest.raises(CapacityExceeded, match=r"Queue size limit reached \(2\)"):
            service.send_to_channel(3, "c")
        assert len(service.store) == 2

    def test_naive_scheduled_for_is_utc(self, service):
        naive = datetime(2026, 3, 1, 15, 30)
        notification_id = service.send_scheduled(1, "later", naive)

        scheduled = service.get_status(notification_id).metadata.scheduled_for
        assert scheduled == naive.replace(tzinfo=timezone.utc)

    def test_get_status_returns_copy(self, service):
        notification_id = service.send_to_channel(1, "x")
        copy = service.get_status(notification_id)
        copy.status = "sent"
        copy.content.text = "changed"

        record = service.get_status(notification_id)
        assert record.status == "pending"
        assert record.content.text == "x"

    def test_get_status_unknown(self, service):
        assert service.get_status("notif_missing") is None

    def test_cancel_unknown(self, service):
        assert service.cancel("notif_missing") is False
        assert service.get_stats().total_cancelled == 0


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------

class TestBulk:
    def test_queues_low_priority_for_each_recipient(self, service):
        recipients = [Recipient(channel_id=1), Recipient(handle="bob"), Recipient(channel_id=3)]

        ids = service.send_bulk(recipients, "Maintenance at 02:00", type="system_alert")

        assert len(ids) == 3
        records = [service.get_status(i) for i in ids]
        assert [r.recipient for r in records] == recipients
        assert all(r.priority == "low" for r in records)
        assert all(r.type == "system_alert" for r in records)
        assert service.get_stats().total_queued == 3

    def test_invalid_recipient_queues_nothing(self, service):
        recipients = [Recipient(channel_id=1), Recipient()]

        with pytest.raises(InvalidRecipient):
            service.send_bulk(recipients, "x")
        assert len(service.store) == 0

    def test_over_capacity_queues_nothing(self, make_service):
        service = make_service(queue_size=3)
        service.send_to_channel(1, "a")

        with pytest.raises(CapacityExceeded):
            service.send_bulk([Recipient(channel_id=i) for i in range(3)], "x")
        assert len(service.store) == 1

    def test_empty_recipient_list(self, service):
        assert service.send_bulk([], "x") == []


# ---------------------------------------------------------------------------
# submit (HTTP / Redis requests)
# ---------------------------------------------------------------------------

class TestSubmit:
    def test_plain_text(self, service):
        request = NotificationRequest(
            channel_id=42,
            text="<b>hi</b>",
            parse_mode="HTML",
            options={"disable_notification": True},
            max_retries=1,
        )

        record = service.get_status(service.submit(request))

        assert record.content.text == "<b>hi</b>"
        assert record.content.parse_mode == "HTML"
        assert record.content.options == {"disable_notification": True}
        assert record.metadata.max_retries == 1

    def test_template_renders_markdown(self, service):
        request = NotificationRequest(
            handle="punter",
            template="wager_update",
            template_args={"amount": 25, "game": "Blackjack", "status": "won"},
            type="wager_update",
        )

        record = service.get_status(service.submit(request))

        assert "*Wager Update*" in record.content.text
        assert "$25.00" in record.content.text
        assert record.content.parse_mode == "Markdown"
        assert record.type == "wager_update"

    def test_unknown_template(self, service):
        request = NotificationRequest(channel_id=1, template="nope")
        with pytest.raises(InvalidRequest, match="Unknown template"):
            service.submit(request)

    def test_bad_template_args(self, service):
        request = NotificationRequest(channel_id=1, template="wager_update", template_args={"amount": 1})
        with pytest.raises(InvalidRequest):
            service.submit(request)

    def test_template_args_of_wrong_shape(self, service):
        request = NotificationRequest(
            channel_id=1, template="weekly_report", template_args={"stats": "oops"}
        )
        with pytest.raises(InvalidRequest, match="weekly_report"):
            service.submit(request)
        assert len(service.store) == 0

    def test_missing_body(self, service):
        with pytest.raises(InvalidRequest, match="text or template"):
            service.submit(NotificationRequest(channel_id=1))

    def test_both_recipients_rejected(self, service):
        with pytest.raises(InvalidRecipient):
            service.submit(NotificationRequest(channel_id=1, handle="bob", text="x"))


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------

class TestSnapshots:
    def test_queue_status_breakdown(self, service):
        service.send_to_channel(1, "a", type="wager_update", priority="high")
        service.send_to_channel(2, "b", type="wager_update")
        cancelled = service.send_to_channel(3, "c", type="balance_change", priority="low")
        service.cancel(cancelled)

        status = service.get_queue_status()

        assert status.total == 3
        assert status.pending == 2
        assert status.cancelled == 1
        assert status.processing == 0
        assert status.priority_breakdown == {"high": 1, "medium": 1, "low": 1}
        assert status.type_breakdown == {"wager_update": 2, "balance_change": 1}

    def test_stats_snapshot(self, make_service):
        service = make_service(batch_size=7)
        service.send_to_channel(1, "a")

        stats = service.get_stats()

        assert stats.queue_size == 1
        assert stats.total_queued == 1
        assert stats.is_processing is False
        assert stats.current_batch is None
        assert stats.rate_limits.minute == 0
        assert stats.config.batch_size == 7

    async def test_stats_after_delivery(self, service):
        service.send_to_channel(1, "a")
        service.send_to_channel(2, "b")

        await service.worker.tick()

        stats = service.get_stats()
        assert stats.total_sent == 2
        assert stats.batches_processed == 1
        assert stats.rate_limits.minute == 2
        assert stats.rate_limits.hour == 2
        assert stats.queue_size == 0


# ---------------------------------------------------------------------------
# History cleanup
# ---------------------------------------------------------------------------

class TestCleanup:
    async def test_prunes_finished_records(self, clock, service):
        sent = service.send_to_channel(1, "a")
        await service.worker.tick()

        clock.advance(timedelta(days=2).total_seconds())
        queued = service.send_to_channel(2, "b")

        assert service.cleanup() == 1
        assert service.get_status(sent) is None
        assert service.get_status(queued) is not None

    async def test_explicit_max_age(self, clock, service):
        sent = service.send_to_channel(1, "a")
        await service.worker.tick()
        clock.advance(10)

        assert service.cleanup(max_age_ms=60_000) == 0
        assert service.cleanup(max_age_ms=5_000) == 1
        assert service.get_status(sent) is None


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    async def test_start_and_stop(self, service, transport):
        await service.start()
        assert service.is_running is True
        assert transport.started is True

        await service.start()
        assert len(service._tasks) == 2

        await service.stop()
        assert service.is_running is False
        assert transport.closed is True

    async def test_retry_resumes_after_restart(self, clock, make_service, make_transport):
        transport = make_transport(fail_times=1)
        service = make_service(
            transport_override=transport, history_max_age_ms=365 * 24 * 3600 * 1000
        )
        notification_id = service.send_to_channel(1, "a")
        await service.worker.tick()
        due = service.get_status(notification_id).metadata.next_attempt_at

        await service.start()
        await service.stop()
        assert clock.pending_timers == []
        assert service.worker.pending_retries == 0

        await service.start()
        assert clock.pending_timers == [due]
        for _ in range(20):
            await asyncio.sleep(0)
        await service.stop()

        record = service.get_status(notification_id)
        assert record.status == "sent"
        assert len(transport.attempts) == 2
        assert service.store.waiting_count == 0
        assert service.store.occupancy == 0

    async def test_overdue_retry_released_on_start(self, clock, make_service, make_transport):
        service = make_service(transport_override=make_transport(fail_times=1))
        notification_id = service.send_to_channel(1, "a")
        await service.worker.tick()
        service.worker.cancel_timers()
        clock.advance(60)

        assert service.worker.resume_timers() == 1
        assert clock.pending_timers == [clock.now()]
        clock.advance(0)

        assert [r.id for r in service.store.records()] == [notification_id]
        assert service.store.waiting_count == 0

    async def test_running_loop_delivers(self, make_service, transport):
        # the cleanup loop advances the manual clock an hour per pass
        service = make_service(history_max_age_ms=365 * 24 * 3600 * 1000)
        notification_id = service.send_to_channel(1, "a")

        await service.start()
        for _ in range(20):
            await asyncio.sleep(0)
        await service.stop()

        assert service.get_status(notification_id).status == "sent"
        assert len(transport.attempts) == 1
