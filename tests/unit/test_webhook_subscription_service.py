from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.core.exceptions import IntegrationMissing, RemoteTransient
from app.core.security import verify_channel_token
from app.db.base import SessionLocal
from app.integrations.google.calendar import CalendarGateway
from app.models.webhook_channel import WebhookChannel
from app.repositories.webhook_channel_repository import WebhookChannelRepository
from app.services.webhook_subscription_service import (
    WebhookSubscriptionService,
    parse_channel_expiration,
)
from app.utils.clock import utcnow


def expiration_ms(delta):
    moment = datetime.now(timezone.utc) + delta
    return str(int(moment.timestamp() * 1000))


def watch_response(user_id, calendar_id, channel_id, **kwargs):
    return {
        "id": channel_id,
        "resourceId": f"res-{calendar_id}",
        "expiration": expiration_ms(timedelta(days=7)),
    }


class TestWebhookSubscriptionService:
    @pytest.fixture
    def gateway(self):
        gateway = MagicMock(spec=CalendarGateway)
        gateway.watch.side_effect = watch_response
        return gateway

    @pytest.fixture
    def service(self, db, gateway):
        return WebhookSubscriptionService(
            db,
            gateway=gateway,
            gateway_factory=lambda session: gateway,
            session_factory=SessionLocal,
            max_workers=2,
        )

    def _channel(self, db, integration, channel_id, calendar_id, expires_in):
        channel = WebhookChannel(
            channel_id=channel_id,
            resource_id=f"res-{channel_id}",
            calendar_id=calendar_id,
            expiration=utcnow() + expires_in,
            integration_id=integration.id,
        )
        db.add(channel)
        db.commit()
        return channel

    def test_subscribe_persists_channel(self, db, service, gateway, integration, user_id):
        channel = service.subscribe(user_id)

        kwargs = gateway.watch.call_args.kwargs
        assert gateway.watch.call_args.args == (user_id, "primary")
        assert kwargs["callback_url"] == "https://calendar-sync.test/api/v1/webhooks/google-calendar"
        assert kwargs["ttl_seconds"] == 7 * 24 * 60 * 60
        assert verify_channel_token(kwargs["token"], kwargs["channel_id"], user_id)

        stored = WebhookChannelRepository(db).get_by_channel_id(channel.channel_id)
        assert stored.resource_id == "res-primary"
        assert stored.integration_id == integration.id
        assert utcnow() + timedelta(days=6) < stored.expiration < utcnow() + timedelta(days=8)

    def test_subscribe_requires_integration(self, service, user_id):
        with pytest.raises(IntegrationMissing):
            service.subscribe(user_id)

    def test_unsubscribe_deletes_even_if_stop_fails(self, db, service, gateway, integration):
        self._channel(db, integration, "chan-a", "primary", timedelta(days=3))
        gateway.stop_watch.side_effect = RemoteTransient("down")

        assert service.unsubscribe("chan-a") is True
        assert WebhookChannelRepository(db).get_by_channel_id("chan-a") is None

    def test_unsubscribe_user_stops_all_channels(self, db, service, gateway, integration, user_id):
        self._channel(db, integration, "chan-a", "primary", timedelta(days=3))
        self._channel(db, integration, "chan-b", "work", timedelta(days=3))

        assert service.unsubscribe_user(user_id) == 2
        assert gateway.stop_watch.call_count == 2
        assert db.query(WebhookChannel).count() == 0

    def test_channel_expiring_soon_is_renewed(self, db, service, gateway, integration):
        self._channel(db, integration, "chan-a", "primary", timedelta(hours=2))
        self._channel(db, integration, "chan-later", "work", timedelta(days=5))

        report = service.renew_expiring(timedelta(hours=24))

        assert report.renewed == ["chan-a"]
        assert report.failed == []
        gateway.stop_watch.assert_called_once()
        db.expire_all()
        repository = WebhookChannelRepository(db)
        assert repository.get_by_channel_id("chan-a") is None
        assert repository.get_by_channel_id("chan-later") is not None
        replacements = [c for c in db.query(WebhookChannel).all() if c.calendar_id == "primary"]
        assert len(replacements) == 1
        assert replacements[0].expiration > utcnow() + timedelta(days=6)

    def test_one_failure_does_not_stop_the_batch(self, db, service, gateway, integration):
        self._channel(db, integration, "chan-a", "cal-a", timedelta(hours=2))
        self._channel(db, integration, "chan-b", "cal-b", timedelta(hours=3))

        def watch(user_id, calendar_id, **kwargs):
            if calendar_id == "cal-a":
                raise RemoteTransient("watch failed")
            return watch_response(user_id, calendar_id, **kwargs)

        gateway.watch.side_effect = watch

        report = service.renew_expiring(timedelta(hours=24))

        assert report.renewed == ["chan-b"]
        assert report.failed == ["chan-a"]
        db.expire_all()
        # The failed channel is kept for the next run while it is still live
        assert WebhookChannelRepository(db).get_by_channel_id("chan-a") is not None

    def test_failed_channel_already_expired_is_purged(self, db, service, gateway, integration):
        self._channel(db, integration, "chan-dead", "primary", timedelta(hours=-1))
        gateway.watch.side_effect = RemoteTransient("watch failed")

        report = service.renew_expiring(timedelta(hours=24))

        assert report.purged == ["chan-dead"]
        db.expire_all()
        assert db.query(WebhookChannel).count() == 0

    def test_expired_channel_is_purged_on_unexpected_error(self, db, service, gateway, integration):
        self._channel(db, integration, "chan-dead", "primary", timedelta(hours=-1))
        # A watch response without a resourceId cannot be stored
        gateway.watch.side_effect = None
        gateway.watch.return_value = {"id": "chan-new"}

        report = service.renew_expiring(timedelta(hours=24))

        assert report.purged == ["chan-dead"]
        assert report.failed == []
        db.expire_all()
        assert db.query(WebhookChannel).count() == 0

    def test_live_channel_kept_on_unexpected_error(self, db, service, gateway, integration):
        self._channel(db, integration, "chan-a", "primary", timedelta(hours=2))
        gateway.watch.side_effect = None
        gateway.watch.return_value = {"id": "chan-new"}

        report = service.renew_expiring(timedelta(hours=24))

        assert report.failed == ["chan-a"]
        db.expire_all()
        assert WebhookChannelRepository(db).get_by_channel_id("chan-a") is not None

    def test_nothing_to_renew(self, service, gateway):
        report = service.renew_expiring()
        assert (report.renewed, report.failed, report.purged) == ([], [], [])
        gateway.watch.assert_not_called()


class TestParseChannelExpiration:
    def test_milliseconds_to_naive_utc(self):
        assert parse_channel_expiration("1741600800000", 60) == datetime(2025, 3, 10, 10, 0)

    def test_missing_expiration_uses_ttl(self):
        parsed = parse_channel_expiration(None, 3600)
        assert utcnow() + timedelta(minutes=59) < parsed <= utcnow() + timedelta(hours=1)
