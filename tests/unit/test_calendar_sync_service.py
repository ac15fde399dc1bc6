"""
Task <-> calendar reconciliation.
"""
from datetime import date, timedelta

import pytest

from app.core.exceptions import RemoteRejected, RemoteTransient
from app.core.security import sign_channel_token
from app.models.event_link import EventLink
from app.models.task import Task
from app.repositories.event_link_repository import EventLinkRepository
from app.repositories.integration_repository import IntegrationRepository
from app.services.calendar_sync_service import (
    MirrorStatus,
    NotificationOutcome,
    PushNotification,
    build_event_body,
    parse_event_schedule,
)
from app.utils.clock import utcnow


def notification(resource_id, state="exists", token=None, channel_id="chan-1", user_id="user-123"):
    return PushNotification(
        channel_id=channel_id,
        resource_id=resource_id,
        resource_state=state,
        channel_token=token or sign_channel_token(channel_id, user_id),
    )


@pytest.fixture
def q_report(make_task):
    return make_task(
        text="Q report",
        add_to_calendar=True,
        due_date=date(2025, 3, 10),
        event_time="09:00",
        event_duration=60,
    )


@pytest.fixture
def linked_task(db, integration, q_report, user_id):
    EventLinkRepository(db).upsert(
        task_id=q_report.id,
        user_id=user_id,
        calendar_id="primary",
        event_id="evt-1",
        fields={"event_date": q_report.due_date, "event_time": "09:00", "event_duration": 60},
        remote_etag='"etag-1"',
    )
    return q_report


class TestBuildEventBody:
    def test_timed_event_with_defaults(self, make_task):
        task = make_task(text="Call bank", add_to_calendar=True, due_date=date(2025, 3, 10))

        body = build_event_body(task)

        assert body["summary"] == "Call bank"
        assert body["start"] == {"dateTime": "2025-03-10T09:00:00", "timeZone": "UTC"}
        assert body["end"] == {"dateTime": "2025-03-10T10:00:00", "timeZone": "UTC"}
        assert body["reminders"] == {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": 30}],
        }
        assert body["extendedProperties"]["private"]["taskId"] == str(task.id)
        assert "recurrence" not in body

    def test_zero_reminder_disables_popup(self, make_task):
        task = make_task(add_to_calendar=True, due_date=date(2025, 3, 10), reminder_minutes=0)
        assert build_event_body(task)["reminders"]["overrides"] == []

    def test_recurrence(self, make_task):
        task = make_task(
            add_to_calendar=True,
            due_date=date(2025, 3, 10),
            recurrence_pattern="WEEKLY",
            recurrence_count=4,
            recurrence_end_date=date(2025, 12, 31),
        )
        assert build_event_body(task)["recurrence"] == ["RRULE:FREQ=WEEKLY;COUNT=4"]


class TestParseEventSchedule:
    def test_timed_event(self):
        schedule = parse_event_schedule(
            {
                "start": {"dateTime": "2025-03-11T14:30:00Z"},
                "end": {"dateTime": "2025-03-11T15:15:00Z"},
            }
        )
        assert schedule == {
            "due_date": date(2025, 3, 11),
            "event_time": "14:30",
            "event_duration": 45,
        }

    def test_offset_is_converted_to_calendar_zone(self):
        schedule = parse_event_schedule(
            {
                "start": {"dateTime": "2025-03-11T01:00:00+02:00"},
                "end": {"dateTime": "2025-03-11T02:00:00+02:00"},
            }
        )
        assert schedule["due_date"] == date(2025, 3, 10)
        assert schedule["event_time"] == "23:00"

    def test_all_day_event(self):
        schedule = parse_event_schedule(
            {"start": {"date": "2025-03-12"}, "end": {"date": "2025-03-13"}}
        )
        assert schedule == {"due_date": date(2025, 3, 12), "event_time": None, "event_duration": None}


class TestMirrorTask:
    def test_q_report_creates_event_and_link(self, db, sync_service, mock_gateway, integration, q_report, user_id):
        result = sync_service.mirror_task(user_id, q_report)

        assert result.status == MirrorStatus.SYNCED
        assert result.event_id == "evt-1"
        args, _ = mock_gateway.create_event.call_args
        assert args[0] == user_id
        assert args[1] == "primary"
        body = args[2]
        assert body["start"]["dateTime"].startswith("2025-03-10T09:00")
        assert body["end"]["dateTime"].startswith("2025-03-10T10:00")

        link = EventLinkRepository(db).get_by_task_id(q_report.id)
        assert link.event_id == "evt-1"
        assert link.event_date == date(2025, 3, 10)
        assert link.event_time == "09:00"
        assert link.event_duration == 60
        assert link.remote_etag == '"etag-1"'

    def test_uses_default_calendar(self, db, sync_service, mock_gateway, integration, q_report, user_id):
        IntegrationRepository(db).set_default_calendar(integration, "work@group.calendar.google.com")

        sync_service.mirror_task(user_id, q_report)

        assert mock_gateway.create_event.call_args[0][1] == "work@group.calendar.google.com"

    def test_existing_link_updates_event(self, db, sync_service, mock_gateway, linked_task, user_id):
        linked_task.event_time = "11:00"
        db.commit()

        result = sync_service.mirror_task(user_id, linked_task)

        assert result.status == MirrorStatus.SYNCED
        mock_gateway.create_event.assert_not_called()
        args, _ = mock_gateway.update_event.call_args
        assert args[:3] == (user_id, "primary", "evt-1")
        link = EventLinkRepository(db).get_by_task_id(linked_task.id)
        assert link.event_time == "11:00"
        assert link.remote_etag == '"etag-2"'

    def test_vanished_event_is_recreated(self, db, sync_service, mock_gateway, linked_task, user_id):
        mock_gateway.update_event.side_effect = RemoteRejected("gone", provider_status=404)
        mock_gateway.create_event.return_value = {"id": "evt-2", "etag": '"etag-9"'}

        result = sync_service.mirror_task(user_id, linked_task)

        assert result.event_id == "evt-2"
        assert EventLinkRepository(db).get_by_task_id(linked_task.id).event_id == "evt-2"

    def test_opting_out_removes_event_and_link(self, db, sync_service, mock_gateway, linked_task, user_id):
        linked_task.add_to_calendar = False
        db.commit()

        result = sync_service.mirror_task(user_id, linked_task)

        assert result.status == MirrorStatus.REMOVED
        mock_gateway.delete_event.assert_called_once()
        assert EventLinkRepository(db).get_by_task_id(linked_task.id) is None

    def test_failed_remote_delete_keeps_link(self, db, sync_service, mock_gateway, linked_task, user_id):
        linked_task.add_to_calendar = False
        db.commit()
        mock_gateway.delete_event.side_effect = RemoteTransient("down")

        result = sync_service.mirror_task(user_id, linked_task)

        assert result.status == MirrorStatus.DEGRADED
        assert EventLinkRepository(db).get_by_task_id(linked_task.id) is not None

    def test_task_without_opt_in_is_skipped(self, sync_service, mock_gateway, make_task, user_id):
        task = make_task(text="Local only")
        assert sync_service.mirror_task(user_id, task).status == MirrorStatus.SKIPPED
        mock_gateway.create_event.assert_not_called()

    def test_not_connected(self, sync_service, mock_gateway, q_report, user_id):
        result = sync_service.mirror_task(user_id, q_report)
        assert result.status == MirrorStatus.NOT_CONNECTED
        mock_gateway.create_event.assert_not_called()

    def test_remote_failure_degrades(self, db, sync_service, mock_gateway, integration, q_report, user_id):
        mock_gateway.create_event.side_effect = RemoteTransient("Google Calendar create_event failed temporarily")

        result = sync_service.mirror_task(user_id, q_report)

        assert result.status == MirrorStatus.DEGRADED
        assert result.warning
        assert EventLinkRepository(db).get_by_task_id(q_report.id) is None

    def test_invalid_recurrence_degrades(self, sync_service, mock_gateway, integration, make_task, user_id):
        task = make_task(add_to_calendar=True, due_date=date(2025, 3, 10), recurrence_pattern="HOURLY")
        assert sync_service.mirror_task(user_id, task).status == MirrorStatus.DEGRADED
        mock_gateway.create_event.assert_not_called()


class TestUnmirrorTask:
    def test_removes_event_and_link(self, db, sync_service, mock_gateway, linked_task, user_id):
        result = sync_service.unmirror_task(user_id, linked_task.id)

        assert result.status == MirrorStatus.REMOVED
        mock_gateway.delete_event.assert_called_once_with(user_id, "primary", "evt-1", cancel_event=None)
        assert EventLinkRepository(db).get_by_task_id(linked_task.id) is None

    def test_link_removed_even_when_remote_delete_fails(self, db, sync_service, mock_gateway, linked_task, user_id):
        mock_gateway.delete_event.side_effect = RemoteTransient("down")

        result = sync_service.unmirror_task(user_id, linked_task.id)

        assert result.status == MirrorStatus.DEGRADED
        assert EventLinkRepository(db).get_by_task_id(linked_task.id) is None

    def test_unlinked_task_is_skipped(self, sync_service, mock_gateway, user_id):
        assert sync_service.unmirror_task(user_id, 999).status == MirrorStatus.SKIPPED
        mock_gateway.delete_event.assert_not_called()

    def test_create_then_delete_leaves_nothing(self, db, sync_service, mock_gateway, integration, q_report, user_id):
        created = sync_service.mirror_task(user_id, q_report)
        removed = sync_service.unmirror_task(user_id, q_report.id)

        assert created.event_id == removed.event_id == "evt-1"
        assert db.query(EventLink).count() == 0
        mock_gateway.delete_event.assert_called_once_with(user_id, "primary", "evt-1", cancel_event=None)


class TestHandleNotification:
    def test_not_exists_completes_task_once(self, db, sync_service, channel, linked_task, user_id):
        first = sync_service.handle_notification(notification("evt-1", state="not_exists"))
        second = sync_service.handle_notification(notification("evt-1", state="not_exists"))

        assert first.outcome == NotificationOutcome.COMPLETED
        assert first.task_ids == [linked_task.id]
        assert second.outcome == NotificationOutcome.NOOP
        db.expire_all()
        assert db.get(Task, linked_task.id).completed is True
        assert db.query(EventLink).count() == 0

    def test_not_exists_for_unknown_event_is_noop(self, sync_service, channel):
        result = sync_service.handle_notification(notification("evt-unknown", state="not_exists"))
        assert result.outcome == NotificationOutcome.NOOP

    def test_exists_updates_task_from_event(self, db, sync_service, mock_gateway, channel, linked_task, user_id):
        mock_gateway.get_event.return_value = {
            "id": "evt-1",
            "etag": '"etag-remote"',
            "status": "confirmed",
            "summary": "Q report (final)",
            "start": {"dateTime": "2025-03-11T14:00:00Z"},
            "end": {"dateTime": "2025-03-11T15:30:00Z"},
        }

        result = sync_service.handle_notification(notification("evt-1"))

        assert result.outcome == NotificationOutcome.SYNCED
        db.expire_all()
        task = db.get(Task, linked_task.id)
        assert task.text == "Q report (final)"
        assert task.due_date == date(2025, 3, 11)
        assert task.event_time == "14:00"
        assert task.event_duration == 90
        link = EventLinkRepository(db).get_by_task_id(linked_task.id)
        assert link.remote_etag == '"etag-remote"'
        assert link.event_date == date(2025, 3, 11)
        mock_gateway.update_event.assert_not_called()
        mock_gateway.create_event.assert_not_called()

    def test_echo_of_own_write_is_skipped(self, db, sync_service, mock_gateway, channel, linked_task):
        mock_gateway.get_event.return_value = {
            "id": "evt-1",
            "etag": '"etag-1"',
            "summary": "Something else",
            "start": {"dateTime": "2025-03-11T14:00:00Z"},
            "end": {"dateTime": "2025-03-11T15:00:00Z"},
        }

        result = sync_service.handle_notification(notification("evt-1"))

        assert result.outcome == NotificationOutcome.NOOP
        db.expire_all()
        assert db.get(Task, linked_task.id).text == "Q report"

    def test_cancelled_event_completes_task(self, db, sync_service, mock_gateway, channel, linked_task):
        mock_gateway.get_event.return_value = {"id": "evt-1", "etag": '"etag-x"', "status": "cancelled"}

        sync_service.handle_notification(notification("evt-1"))

        db.expire_all()
        assert db.get(Task, linked_task.id).completed is True
        assert db.query(EventLink).count() == 0

    def test_event_gone_on_fetch_completes_task(self, db, sync_service, mock_gateway, channel, linked_task):
        mock_gateway.get_event.side_effect = RemoteRejected("gone", provider_status=404)

        result = sync_service.handle_notification(notification("evt-1"))

        assert result.outcome == NotificationOutcome.COMPLETED
        db.expire_all()
        assert db.get(Task, linked_task.id).completed is True

    def test_calendar_level_notification_lists_changes(self, db, sync_service, mock_gateway, channel, linked_task, user_id):
        mock_gateway.list_events.return_value = [
            {"id": "evt-other", "etag": '"x"', "summary": "Not ours"},
            {
                "id": "evt-1",
                "etag": '"etag-remote"',
                "summary": "Q report v2",
                "start": {"dateTime": "2025-03-10T09:00:00Z"},
                "end": {"dateTime": "2025-03-10T10:00:00Z"},
            },
        ]

        result = sync_service.handle_notification(notification("res-calendar-1"))

        assert result.outcome == NotificationOutcome.SYNCED
        assert result.task_ids == [linked_task.id]
        kwargs = mock_gateway.list_events.call_args.kwargs
        assert kwargs["show_deleted"] is True
        assert kwargs["updated_min"] <= utcnow()
        assert kwargs["updated_min"] >= utcnow() - timedelta(hours=2)
        db.expire_all()
        assert db.get(Task, linked_task.id).text == "Q report v2"
        assert channel.last_notified_at is not None

    def test_unknown_channel_is_ignored(self, sync_service, mock_gateway, channel):
        result = sync_service.handle_notification(notification("evt-1", channel_id="chan-unknown"))

        assert result.outcome == NotificationOutcome.IGNORED
        assert result.reason == "unknown_channel"
        mock_gateway.get_event.assert_not_called()

    def test_bad_token_is_ignored(self, db, sync_service, channel, linked_task):
        result = sync_service.handle_notification(
            notification("evt-1", state="not_exists", token="user-123.forged")
        )

        assert result.outcome == NotificationOutcome.IGNORED
        assert result.reason == "invalid_token"
        db.expire_all()
        assert db.get(Task, linked_task.id).completed is False

    def test_sync_handshake_is_ignored(self, sync_service, mock_gateway, channel):
        result = sync_service.handle_notification(notification("res-calendar-1", state="sync"))
        assert result.outcome == NotificationOutcome.IGNORED
        mock_gateway.list_events.assert_not_called()

    def test_remote_failure_is_reported_not_raised(self, sync_service, mock_gateway, channel, linked_task):
        mock_gateway.get_event.side_effect = RemoteTransient("down")

        result = sync_service.handle_notification(notification("evt-1"))

        assert result.outcome == NotificationOutcome.FAILED
        assert result.reason == "remote_transient"
