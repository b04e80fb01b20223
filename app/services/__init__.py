"""
app/services package marker.
"""

from app.services.alerting import (
    Alert,
    AlertHistory,
    AlertRecord,
    AlertSeverity,
    CompositeAlertSink,
    LoggingAlertSink,
    RecordingAlertSink,
    WebhookAlertSink,
    build_alert_sink,
)
from app.services.apl_ingestion_service import APLIngestionService, IngestionResult
from app.services.health_monitor import HealthMonitor
from app.services.sync_engine import SyncEngine, SyncOutcome

__all__ = [
    "Alert",
    "AlertHistory",
    "AlertRecord",
    "AlertSeverity",
    "APLIngestionService",
    "build_alert_sink",
    "CompositeAlertSink",
    "HealthMonitor",
    "IngestionResult",
    "LoggingAlertSink",
    "RecordingAlertSink",
    "SyncEngine",
    "SyncOutcome",
    "WebhookAlertSink",
]
