"""Build the enabled notification channels from config."""

from __future__ import annotations

from abuse_guard.config import NotificationConfig
from abuse_guard.notify.base import NotificationChannel
from abuse_guard.notify.email import EmailChannel
from abuse_guard.notify.slack import SlackChannel


def build_channels(config: NotificationConfig) -> list[NotificationChannel]:
    channels: list[NotificationChannel] = []
    if config.slack.enabled and config.slack.webhook_url:
        channels.append(SlackChannel(config.slack))
    if config.email.enabled and config.email.recipients:
        channels.append(EmailChannel(config.email))
    return channels
