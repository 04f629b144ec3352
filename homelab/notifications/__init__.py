"""
Run outcome notifications (Slack, webhook, desktop, email).
"""

from .formatting import NotificationEvent, NotificationSettings
from .dispatcher import DispatchResult, NotificationDispatcher, send_test_notification

__all__ = [
    'NotificationEvent',
    'NotificationSettings',
    'NotificationDispatcher',
    'DispatchResult',
    'send_test_notification',
]
