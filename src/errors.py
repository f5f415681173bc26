# src/errors.py
"""
Core Error Taxonomy

Every failure the coordination core can surface carries a standardized
envelope (message, error_code, context) so callers can log or forward it
without caring which component raised it.

Propagation policy:
  - ConfigurationError: fatal at construction time
  - UnknownTaskKind: rejected synchronously at submit time
  - TaskExecutionError / TaskTimeoutError: recovered into the recovery decision flow
  - PartitionSyncError: recovered into the partition's SyncStatus
  - DecisionEngineError: call site falls back to a safe default
"""

from typing import Optional, Dict, Any


class CoreError(Exception):
    """Standardized error envelope for the coordination core"""

    def __init__(
        self,
        message: str,
        error_code: str = "CORE_ERROR",
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error dict for events and notifications"""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context
        }


class ConfigurationError(CoreError):
    """Invalid construction-time configuration (e.g. zero-size worker pool)"""

    def __init__(self, message: str, **context: Any):
        super().__init__(message, error_code="CONFIGURATION_ERROR", context=context)


class UnknownTaskKind(CoreError):
    """Submitted task kind has no registered handler"""

    def __init__(self, kind: str, known_kinds: Optional[list] = None):
        self.kind = kind
        super().__init__(
            message=f"No handler registered for task kind '{kind}'",
            error_code="UNKNOWN_TASK_KIND",
            context={"kind": kind, "known_kinds": sorted(known_kinds or [])}
        )


class TaskExecutionError(CoreError):
    """A task handler raised; always fed into the recovery decision flow"""

    def __init__(
        self,
        task_id: str,
        message: str,
        original_error: Optional[BaseException] = None,
        error_code: str = "TASK_EXECUTION_ERROR"
    ):
        self.task_id = task_id
        super().__init__(
            message=message,
            error_code=error_code,
            original_error=original_error,
            context={"task_id": task_id}
        )


class TaskTimeoutError(TaskExecutionError):
    """A task handler exceeded its execution deadline"""

    def __init__(self, task_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            task_id=task_id,
            message=f"Task {task_id} exceeded deadline of {timeout:g}s",
            error_code="TASK_TIMEOUT"
        )
        self.context["timeout"] = timeout


class PartitionSyncError(CoreError):
    """A telemetry partition failed to fetch, enrich or store"""

    def __init__(self, partition: str, stage: str, original_error: Optional[BaseException] = None):
        self.partition = partition
        self.stage = stage
        detail = str(original_error) if original_error else "unknown error"
        super().__init__(
            message=f"Partition '{partition}' failed during {stage}: {detail}",
            error_code="PARTITION_SYNC_ERROR",
            original_error=original_error,
            context={"partition": partition, "stage": stage}
        )


class TelemetrySourceError(CoreError):
    """The external telemetry source could not deliver a partition"""

    def __init__(self, partition: str, message: str, original_error: Optional[BaseException] = None):
        self.partition = partition
        super().__init__(
            message=message,
            error_code="TELEMETRY_SOURCE_ERROR",
            original_error=original_error,
            context={"partition": partition}
        )


class DecisionEngineError(CoreError):
    """The decision engine could not produce a score"""

    def __init__(self, message: str, context: Optional[str] = None, original_error: Optional[BaseException] = None):
        super().__init__(
            message=message,
            error_code="DECISION_ENGINE_ERROR",
            original_error=original_error,
            context={"decision_context": context} if context else {}
        )


class InvalidTransitionError(CoreError):
    """Raised when an invalid task status transition is attempted"""

    def __init__(self, task_id: str, from_status: str, to_status: str):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message=f"Invalid transition for {task_id}: {from_status} → {to_status}",
            error_code="INVALID_TRANSITION",
            context={"task_id": task_id, "from": from_status, "to": to_status}
        )
