"""PyYAML loader → typed config dataclasses."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class DetectionConfig:
    enabled: bool = True
    window_seconds: int = 60
    requests_per_second_threshold: float = 100.0
    auto_block_duration_minutes: int = 15
    event_types: list[str] = field(default_factory=lambda: ["rate_limit", "ddos"])
    connection_window_seconds: int = 10
    concurrent_connections_threshold: int = 500
    check_interval_seconds: int = 60


@dataclass
class AlertConfig:
    deduplication_enabled: bool = True
    deduplication_window_minutes: int = 60
    component: str = "SECURITY"


@dataclass
class SlackConfig:
    enabled: bool = False
    webhook_url: str = ""
    channel: str = "#monitoring"
    username: str = "abuse-guard"
    min_severity: str = "warning"


@dataclass
class EmailConfig:
    enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_address: str = "abuse-guard@localhost"
    recipients: list[str] = field(default_factory=list)
    min_severity: str = "warning"


@dataclass
class NotificationConfig:
    slack: SlackConfig = field(default_factory=SlackConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass
class RetentionConfig:
    interval_seconds: int = 300


@dataclass
class StoreConfig:
    timeout_seconds: float = 5.0


@dataclass
class AppConfig:
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "abuse_guard"


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load security.yaml and return a typed AppConfig.

    Falls back to defaults if the file is absent or a section is missing.
    Environment variables MONGO_URI, MONGO_DB, SLACK_WEBHOOK_URL and
    SMTP_PASSWORD override the file.
    """
    raw: dict = {}
    if path is None:
        path = Path(__file__).parent.parent.parent / "config" / "security.yaml"

    resolved = Path(path)
    if resolved.exists():
        with resolved.open() as f:
            raw = yaml.safe_load(f) or {}

    detection_raw = raw.get("detection", {})
    alerts_raw = raw.get("alerts", {})
    notifications_raw = raw.get("notifications", {})
    slack_raw = notifications_raw.get("slack", {})
    email_raw = notifications_raw.get("email", {})
    retention_raw = raw.get("retention", {})
    store_raw = raw.get("store", {})

    defaults = DetectionConfig()
    return AppConfig(
        detection=DetectionConfig(
            enabled=detection_raw.get("enabled", True),
            window_seconds=detection_raw.get("window_seconds", 60),
            requests_per_second_threshold=detection_raw.get("requests_per_second_threshold", 100.0),
            auto_block_duration_minutes=detection_raw.get("auto_block_duration_minutes", 15),
            event_types=detection_raw.get("event_types", defaults.event_types),
            connection_window_seconds=detection_raw.get("connection_window_seconds", 10),
            concurrent_connections_threshold=detection_raw.get("concurrent_connections_threshold", 500),
            check_interval_seconds=detection_raw.get("check_interval_seconds", 60),
        ),
        alerts=AlertConfig(
            deduplication_enabled=alerts_raw.get("deduplication_enabled", True),
            deduplication_window_minutes=alerts_raw.get("deduplication_window_minutes", 60),
            component=alerts_raw.get("component", "SECURITY"),
        ),
        notifications=NotificationConfig(
            slack=SlackConfig(
                enabled=slack_raw.get("enabled", False),
                webhook_url=os.getenv("SLACK_WEBHOOK_URL", slack_raw.get("webhook_url", "")),
                channel=slack_raw.get("channel", "#monitoring"),
                username=slack_raw.get("username", "abuse-guard"),
                min_severity=slack_raw.get("min_severity", "warning"),
            ),
            email=EmailConfig(
                enabled=email_raw.get("enabled", False),
                smtp_host=email_raw.get("smtp_host", "localhost"),
                smtp_port=email_raw.get("smtp_port", 587),
                smtp_user=email_raw.get("smtp_user", ""),
                smtp_password=os.getenv("SMTP_PASSWORD", email_raw.get("smtp_password", "")),
                from_address=email_raw.get("from_address", "abuse-guard@localhost"),
                recipients=email_raw.get("recipients", []),
                min_severity=email_raw.get("min_severity", "warning"),
            ),
        ),
        retention=RetentionConfig(
            interval_seconds=retention_raw.get("interval_seconds", 300),
        ),
        store=StoreConfig(
            timeout_seconds=store_raw.get("timeout_seconds", 5.0),
        ),
        mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
        mongo_db=os.getenv("MONGO_DB", "abuse_guard"),
    )
