"""Error taxonomy for the alert pipeline.

Only ``CriticalPipelineError`` escapes ``AlertOrchestrator.process_reading``.
Every other failure is converted into a ``PipelineError`` record on the
cycle's ``ProcessingResult`` so one bad alert never blocks the rest.
"""

import enum


class ErrorType(str, enum.Enum):
    """Categories of recoverable errors recorded on a processing result."""

    VALIDATION = "validation_error"
    PROCESSOR_STAGE = "processor_stage_error"
    PERSISTENCE = "persistence_error"
    NOTIFICATION = "notification_error"


class AlertPipelineError(Exception):
    """Base class for alert pipeline failures."""


class CriticalPipelineError(AlertPipelineError):
    """Unexpected failure that aborts the current processing cycle."""


class ProcessorStageError(AlertPipelineError):
    """A custom processing stage failed or returned an unusable result."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class PersistenceError(AlertPipelineError):
    """Saving a batch of alerts failed."""


class NotificationError(AlertPipelineError):
    """Delivering a single notification failed."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel
