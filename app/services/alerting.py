"""
app/services/alerting.py

Alert sinks for sync failures, significant changes, and health degradation.

Alert delivery is best-effort: a sink failure is logged and never fails the
sync run that raised the alert.

Every alert that reaches the composite sink is also kept in a bounded
in-memory AlertHistory so operators can list and acknowledge it through the
API after the fact.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import requests

from app.config import SyncSettings, get_sync_settings

logger = logging.getLogger(__name__)


class AlertSeverity:
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_SEVERITY_LOG_LEVELS: dict[str, int] = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.ERROR: logging.ERROR,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}

_SLACK_COLORS: dict[str, str] = {
    AlertSeverity.INFO: "good",
    AlertSeverity.WARNING: "warning",
    AlertSeverity.ERROR: "danger",
    AlertSeverity.CRITICAL: "danger",
}


@dataclass(frozen=True)
class Alert:
    title: str
    message: str
    severity: str = AlertSeverity.WARNING
    state: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AlertSink(Protocol):
    def send(self, alert: Alert) -> None:
        ...


class LoggingAlertSink:
    """
    Writes alerts to the application log.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def send(self, alert: Alert) -> None:
        self._log.log(
            _SEVERITY_LOG_LEVELS.get(alert.severity, logging.WARNING),
            "ALERT severity=%s state=%s title=%r message=%r",
            alert.severity,
            alert.state,
            alert.title,
            alert.message,
        )


def build_webhook_payload(alert: Alert) -> dict[str, Any]:
    """
    Slack-compatible incoming-webhook payload.
    """

    fields: list[dict[str, Any]] = [{"title": "Severity", "value": alert.severity, "short": True}]
    if alert.state:
        fields.append({"title": "State", "value": alert.state, "short": True})
    for key, value in alert.details.items():
        fields.append({"title": key, "value": str(value), "short": True})

    return {
        "text": f"[{alert.severity.upper()}] {alert.title}",
        "attachments": [
            {
                "color": _SLACK_COLORS.get(alert.severity, "warning"),
                "title": alert.title,
                "text": alert.message,
                "fields": fields,
                "footer": "APL sync",
                "ts": int(alert.timestamp.timestamp()),
            }
        ],
    }


class WebhookAlertSink:
    """
    POSTs alerts to a webhook URL.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    def send(self, alert: Alert) -> None:
        try:
            response = self._session.post(
                self._url,
                json=build_webhook_payload(alert),
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error(
                "Alert webhook delivery failed state=%s title=%r error=%s",
                alert.state,
                alert.title,
                exc,
            )


class CompositeAlertSink:
    """
    Fans one alert out to several sinks.
    """

    def __init__(self, sinks: Sequence[AlertSink]) -> None:
        self._sinks = tuple(sinks)

    def send(self, alert: Alert) -> None:
        for sink in self._sinks:
            try:
                sink.send(alert)
            except Exception as exc:  # noqa: BLE001
                logger.error("Alert sink %s raised: %s", type(sink).__name__, exc)


@dataclass
class AlertRecord:
    alert: Alert
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None


class AlertHistory:
    """
    Bounded, thread-safe record of alerts raised in this process.
    """

    def __init__(self, max_items: int = 500) -> None:
        self._items: deque[AlertRecord] = deque(maxlen=max(1, max_items))
        self._lock = threading.Lock()

    def record(self, alert: Alert) -> AlertRecord:
        record = AlertRecord(alert=alert)
        with self._lock:
            self._items.append(record)
        return record

    def recent(
        self,
        *,
        limit: int = 50,
        state: str | None = None,
        unacknowledged_only: bool = False,
    ) -> list[AlertRecord]:
        """
        Newest first, optionally filtered by state and acknowledgement.
        """

        with self._lock:
            items = list(self._items)
        selected: list[AlertRecord] = []
        for record in reversed(items):
            if state is not None and record.alert.state != state:
                continue
            if unacknowledged_only and record.acknowledged:
                continue
            selected.append(record)
            if len(selected) >= max(1, limit):
                break
        return selected

    def acknowledge(self, alert_id: str, *, acknowledged_by: str | None = None) -> AlertRecord | None:
        with self._lock:
            for record in self._items:
                if record.id != alert_id:
                    continue
                if not record.acknowledged:
                    record.acknowledged = True
                    record.acknowledged_at = datetime.now(timezone.utc)
                    record.acknowledged_by = acknowledged_by
                    logger.info("Alert acknowledged id=%s by=%s", alert_id, acknowledged_by)
                return record
        return None


class RecordingAlertSink:
    """
    Records each alert in an AlertHistory, then forwards it.
    """

    def __init__(self, inner: AlertSink, history: AlertHistory) -> None:
        self._inner = inner
        self._history = history

    def send(self, alert: Alert) -> None:
        self._history.record(alert)
        self._inner.send(alert)


def build_alert_sink(
    settings: SyncSettings | None = None,
    history: AlertHistory | None = None,
) -> AlertSink:
    """
    Logging sink always; webhook sink when APL_ALERT_WEBHOOK_URL is set.
    With ``history`` every alert is recorded before delivery.
    """

    resolved = settings or get_sync_settings()
    sinks: list[AlertSink] = [LoggingAlertSink()]
    if resolved.alert_webhook_url:
        sinks.append(
            WebhookAlertSink(
                resolved.alert_webhook_url,
                timeout_seconds=resolved.alert_timeout_seconds,
            )
        )
    composite = CompositeAlertSink(sinks)
    if history is None:
        return composite
    return RecordingAlertSink(composite, history)
