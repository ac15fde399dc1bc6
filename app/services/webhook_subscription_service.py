# app/services/webhook_subscription_service.py
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import BusinessException, IntegrationMissing
from app.core.monitoring import CalendarEventType, track_event
from app.core.security import sign_channel_token
from app.db.session import session_scope
from app.models.webhook_channel import WebhookChannel
from app.repositories.integration_repository import IntegrationRepository
from app.repositories.webhook_channel_repository import WebhookChannelRepository
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RenewalReport:
    renewed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    purged: List[str] = field(default_factory=list)


def parse_channel_expiration(value, fallback_ttl: int) -> datetime:
    """Channel expirations arrive as milliseconds since the epoch, as a string."""
    if value:
        seconds = int(value) / 1000
        return to_naive_utc(datetime.fromtimestamp(seconds, tz=timezone.utc))
    return utcnow() + timedelta(seconds=fallback_ttl)


def _default_gateway_factory(db: Session):
    from app.integrations.google.calendar import CalendarGateway

    return CalendarGateway(db)


class WebhookSubscriptionService:
    """
    Opens, renews and closes push-notification channels.

    Renewal runs each channel on its own worker with its own session; one
    channel failing never stops the rest of the batch.
    """

    def __init__(
        self,
        db: Session,
        gateway=None,
        gateway_factory: Callable[[Session], object] = _default_gateway_factory,
        session_factory: Optional[Callable[[], Session]] = None,
        max_workers: Optional[int] = None,
    ):
        self.db = db
        self.gateway_factory = gateway_factory
        self.gateway = gateway if gateway is not None else gateway_factory(db)
        self.session_factory = session_factory
        self.max_workers = max_workers or settings.WEBHOOK_RENEWAL_WORKERS
        self.channels = WebhookChannelRepository(db)
        self.integrations = IntegrationRepository(db)

    def subscribe(
        self, user_id: str, calendar_id: Optional[str] = None
    ) -> WebhookChannel:
        """Open a channel on the user's default (or given) calendar."""
        integration = self.integrations.get_active_by_user_id(user_id)
        if integration is None:
            raise IntegrationMissing("Google Calendar is not connected")
        return self._open_channel(
            self.gateway,
            self.channels,
            user_id,
            integration.id,
            calendar_id or integration.default_calendar_id or "primary",
        )

    def unsubscribe(self, channel_id: str) -> bool:
        """Stop a channel remotely and forget it, even if the remote stop fails."""
        channel = self.channels.get_by_channel_id(channel_id)
        if channel is None:
            return False
        user_id = channel.integration.user_id
        self._stop_quietly(self.gateway, user_id, channel)
        self.channels.delete_by_channel_id(channel_id)
        track_event(
            CalendarEventType.WEBHOOK_DELETED, user_id, {"channel_id": channel_id}
        )
        return True

    def unsubscribe_user(self, user_id: str) -> int:
        stopped = 0
        for channel in self.channels.list_by_user_id(user_id):
            if self.unsubscribe(channel.channel_id):
                stopped += 1
        return stopped

    def renew_expiring(self, horizon: Optional[timedelta] = None) -> RenewalReport:
        """Renew every channel that expires within ``horizon`` (24h by default)."""
        horizon = horizon or timedelta(hours=settings.WEBHOOK_RENEWAL_HORIZON_HOURS)
        cutoff = utcnow() + horizon
        channel_ids = [c.channel_id for c in self.channels.list_expiring_before(cutoff)]
        report = RenewalReport()
        if not channel_ids:
            return report

        logger.info(f"Renewing {len(channel_ids)} webhook channel(s)")
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._renew_in_own_session, channel_id): channel_id
                for channel_id in channel_ids
            }
            for future in as_completed(futures):
                channel_id = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    logger.error(
                        f"Renewal of channel {channel_id} crashed: {e}", exc_info=True
                    )
                    outcome = "failed"
                getattr(report, outcome).append(channel_id)

        logger.info(
            f"Webhook renewal done: renewed={len(report.renewed)} "
            f"failed={len(report.failed)} purged={len(report.purged)}"
        )
        return report

    def _renew_in_own_session(self, channel_id: str) -> str:
        with session_scope(self.session_factory) as db:
            gateway = self.gateway_factory(db)
            try:
                self._renew(db, gateway, channel_id)
                return "renewed"
            except BusinessException as e:
                logger.warning(f"Could not renew channel {channel_id}: {e.code}")
            except Exception as e:
                logger.error(
                    f"Unexpected error renewing channel {channel_id}: {e}", exc_info=True
                )
                db.rollback()
            return self._purge_if_expired(db, channel_id)

    @staticmethod
    def _purge_if_expired(db: Session, channel_id: str) -> str:
        """After a failed renewal: drop the channel if it is already dead."""
        channels = WebhookChannelRepository(db)
        channel = channels.get_by_channel_id(channel_id)
        if channel is not None and channel.expiration < utcnow():
            channels.delete_by_channel_id(channel_id)
            return "purged"
        return "failed"

    def _renew(self, db: Session, gateway, channel_id: str) -> WebhookChannel:
        channels = WebhookChannelRepository(db)
        channel = channels.get_by_channel_id(channel_id)
        if channel is None:
            raise IntegrationMissing(f"Channel {channel_id} no longer exists")
        integration = channel.integration
        if not integration.is_active:
            raise IntegrationMissing("Google Calendar is not connected")

        user_id = integration.user_id
        replacement = self._open_channel(
            gateway, channels, user_id, integration.id, channel.calendar_id
        )
        self._stop_quietly(gateway, user_id, channel)
        channels.delete_by_channel_id(channel_id)
        logger.info(f"Renewed channel {channel_id} as {replacement.channel_id}")
        return replacement

    def _open_channel(
        self,
        gateway,
        channels: WebhookChannelRepository,
        user_id: str,
        integration_id: int,
        calendar_id: str,
    ) -> WebhookChannel:
        channel_id = str(uuid.uuid4())
        ttl = settings.WEBHOOK_CHANNEL_TTL_SECONDS
        response = gateway.watch(
            user_id,
            calendar_id,
            channel_id=channel_id,
            callback_url=settings.webhook_callback_url,
            token=sign_channel_token(channel_id, user_id),
            ttl_seconds=ttl,
        )
        channel = WebhookChannel(
            channel_id=channel_id,
            resource_id=response["resourceId"],
            calendar_id=calendar_id,
            expiration=parse_channel_expiration(response.get("expiration"), ttl),
            integration_id=integration_id,
        )
        channels.save(channel)
        track_event(
            CalendarEventType.WEBHOOK_CREATED,
            user_id,
            {"channel_id": channel_id, "calendar_id": calendar_id},
        )
        return channel

    @staticmethod
    def _stop_quietly(gateway, user_id: str, channel: WebhookChannel) -> None:
        try:
            gateway.stop_watch(user_id, channel.channel_id, channel.resource_id)
        except BusinessException as e:
            # Unstopped channels expire on their own at the provider
            logger.warning(f"Could not stop channel {channel.channel_id}: {e.code}")
