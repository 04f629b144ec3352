"""
Notification dispatch with gating, rate limiting and circuit breakers.

An event goes through four gates before any channel is tried:

1. Notifications must be enabled.
2. Manual runs need ``notify_manual``; scheduled runs are notified by default.
3. The event's trigger must be in the configured trigger set.
4. The event must not fall within ``min_interval_seconds`` of the last
   notification.

Only events that are neither dry runs nor ``start`` events record the time
of last notification. A ``start`` event is therefore still rate limited, but
it never blocks the terminal event of its own run.

Channels are tried in the fixed order slack, webhook, macos, linux, email.
A channel that fails once is circuit broken for the life of the dispatcher.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from ..exit_codes import NotificationDeliveryError
from .channels import CHANNEL_ORDER, NotificationChannel, build_channels
from .formatting import NotificationEvent, NotificationSettings

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    attempted: int = 0
    succeeded: int = 0
    delivered: List[str] = field(default_factory=list)
    dropped_reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.succeeded > 0


class NotificationDispatcher:
    """
    Holds the rate-limit timestamp and broken-channel set for one process.

    Args:
        settings: Notification settings
        clock: Returns the current time in epoch seconds
        channels: Channel instances by name (built from settings if omitted)
    """

    def __init__(self, settings: NotificationSettings,
                 clock: Callable[[], float] = time.time,
                 channels: Optional[Dict[str, NotificationChannel]] = None):
        self.settings = settings
        self.clock = clock
        self.channels = channels if channels is not None else build_channels(settings)
        self.last_notification_time = 0.0
        self.broken_channels: Set[str] = set()

    def gate(self, event: NotificationEvent, settings: NotificationSettings) -> Optional[str]:
        """Return why an event must be dropped, or None if it may be sent."""
        if not settings.enabled:
            return "notifications disabled"

        if not event.is_scheduled and not settings.notify_manual:
            return "manual run without --notify"

        if event.status not in settings.triggers:
            return f"trigger '{event.status}' not enabled"

        now = self.clock()
        elapsed = now - self.last_notification_time
        if self.last_notification_time > 0 and elapsed < settings.min_interval_seconds:
            return f"rate limited ({elapsed:.0f}s < {settings.min_interval_seconds}s)"

        return None

    def dispatch(self, event: NotificationEvent,
                 settings: Optional[NotificationSettings] = None) -> DispatchResult:
        """
        Send an event to every configured, available, unbroken channel.

        Args:
            event: Event to deliver
            settings: Per-workflow settings overriding the dispatcher's own

        Returns:
            DispatchResult with attempted/succeeded channel counts
        """
        settings = settings or self.settings
        result = DispatchResult()

        reason = self.gate(event, settings)
        if reason:
            logger.debug(f"Notification for {event.workflow} ({event.status}) dropped: {reason}")
            result.dropped_reason = reason
            return result

        if not event.dry_run and event.status != 'start':
            self.last_notification_time = self.clock()

        for name in CHANNEL_ORDER:
            if name not in settings.channels:
                continue
            if name in self.broken_channels:
                logger.debug(f"Skipping {name}: circuit breaker open")
                continue
            channel = self.channels.get(name)
            if channel is None or not channel.is_available():
                logger.debug(f"Skipping {name}: not available")
                continue

            result.attempted += 1
            if event.dry_run:
                logger.info(f"[Dry Run] Would notify via {name}:\n{channel.preview(event)}")
                result.succeeded += 1
                result.delivered.append(name)
                continue

            try:
                channel.send(event)
            except NotificationDeliveryError as e:
                logger.warning(f"Notification via {name} failed: {e}")
                self.broken_channels.add(name)
                continue

            result.succeeded += 1
            result.delivered.append(name)

        if result.attempted == 0:
            logger.warning("No notification channels available")
        else:
            logger.info(f"Sent via {result.succeeded}/{result.attempted} channels")
        return result

    def reset(self):
        """Forget the rate-limit timestamp and close all breakers."""
        self.last_notification_time = 0.0
        self.broken_channels.clear()


def send_test_notification(dispatcher: NotificationDispatcher, dry_run: bool = False) -> DispatchResult:
    """Send a synthetic successful run through every configured channel."""
    triggers = list(dispatcher.settings.triggers)
    if 'success' not in triggers:
        triggers.append('success')
    settings = dispatcher.settings.with_overrides({'triggers': triggers})

    event = NotificationEvent(
        workflow='test',
        status='success',
        duration='2m 15s',
        completed=4,
        total=4,
        is_scheduled=True,
        dry_run=dry_run,
    )
    return dispatcher.dispatch(event, settings)
