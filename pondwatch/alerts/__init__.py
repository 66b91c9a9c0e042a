"""Alert pipeline for water-quality sensor readings.

Components:
- ThresholdStore: Per-parameter safe/critical ranges and water-type presets
- AlertGenerator: Drafts for out-of-range values in the latest reading
- ValidationStage / DeduplicationStage / EnrichmentStage / PrioritizationStage
- SignatureWindow: Moving window of recently seen alert signatures
- NotificationRouter / NotificationChannel: Category-based notification fan-out
- HttpNotifier / LoggingNotifier: Notification transports
- AlertStore / InMemoryAlertRepository: Alert persistence
- ResultCache: TTL cache for display queries
- AlertOrchestrator: Entry point running one processing cycle per reading batch
- AlertMonitor: Poll loop and push handler feeding the orchestrator
"""

from pondwatch.alerts.cache import ResultCache
from pondwatch.alerts.channels import (
    DeliveryResult,
    DeviceStatusChannel,
    HttpNotifier,
    LoggingNotifier,
    NotificationChannel,
    Notifier,
    WaterQualityChannel,
    WeatherChannel,
)
from pondwatch.alerts.config import AlertConfig
from pondwatch.alerts.dedup import SignatureWindow, alert_signature
from pondwatch.alerts.errors import (
    AlertPipelineError,
    CriticalPipelineError,
    ErrorType,
    NotificationError,
    PersistenceError,
    ProcessorStageError,
)
from pondwatch.alerts.generator import AlertGenerator
from pondwatch.alerts.monitor import AlertMonitor, JsonFileSource
from pondwatch.alerts.orchestrator import (
    AlertOrchestrator,
    DisplayAlert,
    build_orchestrator,
)
from pondwatch.alerts.pipeline import (
    AlertProcessor,
    DeduplicationStage,
    EnrichmentStage,
    PrioritizationStage,
    ValidationStage,
    sort_alerts,
)
from pondwatch.alerts.repository import AlertStore, InMemoryAlertRepository
from pondwatch.alerts.router import DispatchReport, NotificationRouter
from pondwatch.alerts.schemas import (
    VALID_CATEGORIES,
    VALID_LEVELS,
    VALID_SEVERITIES,
    Alert,
    AlertDraft,
    AlertLevel,
    DuplicateRecord,
    NotificationReceipt,
    Parameter,
    PipelineError,
    ProcessingResult,
    Severity,
    Threshold,
)
from pondwatch.alerts.thresholds import ThresholdStore

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertDraft",
    "AlertGenerator",
    "AlertLevel",
    "AlertMonitor",
    "AlertOrchestrator",
    "AlertPipelineError",
    "AlertProcessor",
    "AlertStore",
    "CriticalPipelineError",
    "DeduplicationStage",
    "DeliveryResult",
    "DeviceStatusChannel",
    "DisplayAlert",
    "DispatchReport",
    "DuplicateRecord",
    "EnrichmentStage",
    "ErrorType",
    "HttpNotifier",
    "InMemoryAlertRepository",
    "JsonFileSource",
    "LoggingNotifier",
    "NotificationChannel",
    "NotificationError",
    "NotificationReceipt",
    "NotificationRouter",
    "Notifier",
    "Parameter",
    "PersistenceError",
    "PipelineError",
    "PrioritizationStage",
    "ProcessingResult",
    "ProcessorStageError",
    "ResultCache",
    "Severity",
    "SignatureWindow",
    "Threshold",
    "ThresholdStore",
    "VALID_CATEGORIES",
    "VALID_LEVELS",
    "VALID_SEVERITIES",
    "ValidationStage",
    "WaterQualityChannel",
    "WeatherChannel",
    "alert_signature",
    "build_orchestrator",
    "sort_alerts",
]
