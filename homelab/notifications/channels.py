"""
Notification channels.

Each channel knows whether it can deliver on this host and how to deliver
one event. Delivery problems raise NotificationDeliveryError; the dispatcher
decides what that means for later events.
"""

import json
import logging
import platform
from abc import ABC, abstractmethod
from typing import Dict

import requests

from ..exit_codes import NotificationDeliveryError
from ..utils import run_command, which
from .formatting import (
    DESKTOP_URGENCY, NotificationEvent, NotificationSettings,
    email_subject, format_plain, format_slack, format_webhook,
)

logger = logging.getLogger(__name__)

# Delivery priority
CHANNEL_ORDER = ('slack', 'webhook', 'macos', 'linux', 'email')


class NotificationChannel(ABC):
    """Abstract base class for notification channels."""

    name = ''

    def __init__(self, settings: NotificationSettings):
        self.settings = settings

    @abstractmethod
    def is_available(self) -> bool:
        """True if credentials, platform and required commands are present."""
        pass

    @abstractmethod
    def send(self, event: NotificationEvent):
        """
        Deliver an event.

        Raises:
            NotificationDeliveryError: If delivery failed.
        """
        pass

    def preview(self, event: NotificationEvent) -> str:
        """What ``send`` would deliver, shown by dry runs."""
        return f"{event.title}\n{format_plain(event, self.settings)}"

    def _post_json(self, url: str, payload: dict, headers: Dict[str, str] = None):
        try:
            response = requests.post(url, json=payload, headers=headers,
                                     timeout=self.settings.http_timeout)
        except requests.RequestException as e:
            raise NotificationDeliveryError(f"{self.name}: request failed: {e}")
        if not 200 <= response.status_code < 300:
            raise NotificationDeliveryError(f"{self.name}: HTTP {response.status_code}")

    def _run(self, command, input_text=None):
        exit_code, output = run_command(command, input_text=input_text, timeout=30,
                                        log_stderr=False)
        if exit_code != 0:
            detail = output.strip().splitlines()[-1] if output.strip() else ''
            raise NotificationDeliveryError(f"{self.name}: exit code {exit_code} {detail}".rstrip())


class SlackChannel(NotificationChannel):
    name = 'slack'

    def is_available(self) -> bool:
        return bool(self.settings.slack_webhook_url)

    def send(self, event: NotificationEvent):
        self._post_json(self.settings.slack_webhook_url, format_slack(event, self.settings))

    def preview(self, event: NotificationEvent) -> str:
        return json.dumps(format_slack(event, self.settings), indent=2)


class WebhookChannel(NotificationChannel):
    name = 'webhook'

    def is_available(self) -> bool:
        return bool(self.settings.webhook_url)

    def send(self, event: NotificationEvent):
        headers = {'Content-Type': 'application/json'}
        headers.update(self.settings.webhook_headers or {})
        self._post_json(self.settings.webhook_url, format_webhook(event, self.settings), headers)

    def preview(self, event: NotificationEvent) -> str:
        payload = json.dumps(format_webhook(event, self.settings), indent=2)
        return f"POST {self.settings.webhook_url}\n{payload}"


def _applescript_string(text: str) -> str:
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


class MacOSChannel(NotificationChannel):
    name = 'macos'

    def is_available(self) -> bool:
        return platform.system() == 'Darwin' and which('osascript') is not None

    def send(self, event: NotificationEvent):
        body = f"{event.completed}/{event.total} steps" if event.total else event.status
        if event.failed:
            body += f", failed: {', '.join(event.failed)}"
        script = (f"display notification {_applescript_string(body)} "
                  f"with title {_applescript_string(event.title)} "
                  f"subtitle {_applescript_string(event.hostname)}")
        if self.settings.macos_sound:
            sound = 'Basso' if event.status == 'failure' else 'default'
            script += f" sound name {_applescript_string(sound)}"
        self._run(['osascript', '-e', script])


class LinuxChannel(NotificationChannel):
    name = 'linux'

    def is_available(self) -> bool:
        return which('notify-send') is not None

    def send(self, event: NotificationEvent):
        urgency = DESKTOP_URGENCY.get(event.status, 'low')
        self._run(['notify-send', '-u', urgency, '-a', 'homelab',
                   event.title, format_plain(event, self.settings)])


class EmailChannel(NotificationChannel):
    name = 'email'

    def is_available(self) -> bool:
        return bool(self.settings.email_to) and which('mail') is not None

    def send(self, event: NotificationEvent):
        command = ['mail', '-s', email_subject(event)]
        if self.settings.email_from:
            command += ['-r', self.settings.email_from]
        command.append(self.settings.email_to)
        self._run(command, input_text=format_plain(event, self.settings) + '\n')


CHANNEL_CLASSES = {
    cls.name: cls for cls in (SlackChannel, WebhookChannel, MacOSChannel, LinuxChannel, EmailChannel)
}


def build_channels(settings: NotificationSettings) -> Dict[str, NotificationChannel]:
    return {name: CHANNEL_CLASSES[name](settings) for name in CHANNEL_ORDER}
