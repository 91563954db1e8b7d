"""Notification transports for prize events."""
from .teams_webhook import TeamsWebhook, TeamsWebhookNotifier

__all__ = (
    'TeamsWebhook',
    'TeamsWebhookNotifier',
)
