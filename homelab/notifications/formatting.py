"""
Notification events and the message formats built from them.
"""

import socket
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

TRIGGERS = ('start', 'success', 'warning', 'failure')

STATUS_ICONS = {
    'success': '✓',
    'warning': '⚠',
    'failure': '✗',
    'start': 'ℹ',
}

SLACK_COLORS = {
    'success': 'good',
    'warning': 'warning',
    'failure': 'danger',
    'start': '#439FE0',
}

STATUS_WORDS = {
    'start': 'started',
    'success': 'succeeded',
    'warning': 'completed with warnings',
    'failure': 'failed',
}

DESKTOP_URGENCY = {
    'failure': 'critical',
    'warning': 'normal',
}


@dataclass
class NotificationSettings:
    """Notification configuration (the ``notifications`` config section)."""

    enabled: bool = True
    notify_manual: bool = False
    triggers: List[str] = field(default_factory=lambda: ['warning', 'failure'])
    channels: List[str] = field(default_factory=lambda: ['slack', 'macos'])
    min_interval_seconds: float = 60
    rich_format: bool = True
    redact_paths: bool = False
    http_timeout: float = 10
    slack_webhook_url: str = ''
    slack_username: str = 'homelab-bot'
    webhook_url: str = ''
    webhook_headers: Dict[str, str] = field(default_factory=dict)
    email_to: str = ''
    email_from: str = 'homelab@localhost'
    macos_sound: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'NotificationSettings':
        section = config.get('notifications', config)
        known = cls.__dataclass_fields__
        values = {k: v for k, v in section.items() if k in known}
        for key in ('triggers', 'channels'):
            if isinstance(values.get(key), str):
                values[key] = [v.strip() for v in values[key].split(',') if v.strip()]
        return cls(**values)

    def with_overrides(self, overrides: Optional[Dict[str, List[str]]]) -> 'NotificationSettings':
        """Apply a workflow's own ``notifications`` block (triggers, channels)."""
        if not overrides:
            return self
        changes = {k: list(v) for k, v in overrides.items() if k in ('triggers', 'channels')}
        return replace(self, **changes)


@dataclass
class NotificationEvent:
    """One notification-worthy moment of a workflow run."""

    workflow: str
    status: str
    duration: str = ''
    completed: int = 0
    total: int = 0
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    log_file: Optional[str] = None
    is_scheduled: bool = False
    dry_run: bool = False
    hostname: str = field(default_factory=socket.gethostname)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def icon(self) -> str:
        return STATUS_ICONS.get(self.status, 'ℹ')

    @property
    def title(self) -> str:
        word = STATUS_WORDS.get(self.status, self.status)
        return f"{self.workflow.capitalize()} workflow {word}"


def display_path(path: Optional[str], settings: NotificationSettings) -> Optional[str]:
    """Replace the home directory with ``~`` when paths are redacted."""
    if not path or not settings.redact_paths:
        return path
    home = str(Path.home())
    if path.startswith(home):
        return '~' + path[len(home):]
    return path


def format_plain(event: NotificationEvent, settings: NotificationSettings) -> str:
    """Plain text body used by desktop, email and simple Slack messages."""
    lines = [f"{event.icon} {event.title} on {event.hostname}"]
    if event.duration:
        lines.append(f"Duration: {event.duration}")
    if event.total:
        lines.append(f"Steps: {event.completed}/{event.total} completed")
    if event.skipped:
        lines.append(f"Skipped: {len(event.skipped)}")
    if event.failed:
        lines.append(f"Failed: {len(event.failed)}")
        lines.extend(f"  - {name}" for name in event.failed)
    log_file = display_path(event.log_file, settings)
    if log_file:
        lines.append(f"Log: {log_file}")
    lines.append(f"Time: {event.timestamp:%Y-%m-%d %H:%M:%S}")
    return '\n'.join(lines)


def format_slack(event: NotificationEvent, settings: NotificationSettings) -> Dict[str, Any]:
    """Slack incoming-webhook payload."""
    if not settings.rich_format:
        return {
            'username': settings.slack_username,
            'text': format_plain(event, settings),
        }

    fields = []
    if event.duration:
        fields.append({'title': 'Duration', 'value': event.duration, 'short': True})
    if event.total:
        fields.append({'title': 'Steps', 'value': f"{event.completed}/{event.total} completed", 'short': True})
    if event.skipped:
        fields.append({'title': 'Skipped', 'value': str(len(event.skipped)), 'short': True})
    if event.failed:
        fields.append({'title': 'Failed Steps', 'value': ', '.join(event.failed), 'short': False})
    fields.append({'title': 'Host', 'value': event.hostname, 'short': True})

    return {
        'username': settings.slack_username,
        'icon_emoji': ':robot_face:',
        'attachments': [{
            'color': SLACK_COLORS.get(event.status, '#439FE0'),
            'title': f"{event.icon} {event.title}",
            'fields': fields,
            'footer': 'homelab',
            'ts': int(event.timestamp.timestamp()),
        }],
    }


def format_webhook(event: NotificationEvent, settings: NotificationSettings) -> Dict[str, Any]:
    """Generic webhook payload. Field names are consumed by external tools."""
    return {
        'workflow': event.workflow,
        'status': event.status,
        'hostname': event.hostname,
        'timestamp': event.timestamp.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
        'duration': event.duration,
        'steps': {
            'completed': event.completed,
            'total': event.total,
            'failed': list(event.failed),
            'skipped': list(event.skipped),
        },
        'log_file': display_path(event.log_file, settings) or '',
    }


def email_subject(event: NotificationEvent) -> str:
    return f"[homelab] {event.title}"
