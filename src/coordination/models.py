# src/coordination/models.py
"""
Task and Worker records for the coordination core.
Task lifecycle: PENDING → RUNNING → COMPLETED | FAILED
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Set

from src.errors import InvalidTransitionError

logger = logging.getLogger("castquest.coordination.models")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Task lifecycle states"""
    PENDING = "pending"        # Queued, waiting for an idle worker
    RUNNING = "running"        # Bound to a worker, handler executing
    COMPLETED = "completed"    # Handler returned
    FAILED = "failed"          # Handler raised or timed out


class WorkerStatus(str, Enum):
    """Worker states"""
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"            # Reserved for workers taken out of rotation


# Valid task status transitions
VALID_TASK_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),  # Terminal
    TaskStatus.FAILED: set(),     # Terminal, retries create a new task
}


@dataclass
class Task:
    """A unit of work submitted to the coordinator"""
    kind: str
    payload: Any
    priority: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = field(default=TaskStatus.PENDING)
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None
    worker_id: Optional[str] = None
    attempt: int = 1
    retry_of: Optional[str] = None

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        return new_status in VALID_TASK_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: TaskStatus) -> None:
        """
        Move to a new status, stamping started_at / completed_at.

        Raises:
            InvalidTransitionError: If transition is not valid
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(self.id, self.status.value, new_status.value)

        previous = self.status
        self.status = new_status
        if new_status == TaskStatus.RUNNING:
            self.started_at = utcnow()
        elif new_status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            self.completed_at = utcnow()

        logger.debug(f"Task {self.id}: {previous.value} → {new_status.value}")

    def start(self, worker_id: str) -> None:
        self.transition_to(TaskStatus.RUNNING)
        self.worker_id = worker_id

    def complete(self, result: Any) -> None:
        self.transition_to(TaskStatus.COMPLETED)
        self.result = result

    def fail(self, error: str) -> None:
        self.transition_to(TaskStatus.FAILED)
        self.error = error

    def spawn_retry(self) -> "Task":
        """New pending task for the same work, one priority step lower"""
        return Task(
            kind=self.kind,
            payload=self.payload,
            priority=max(0.0, self.priority - 1),
            attempt=self.attempt + 1,
            retry_of=self.id,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @property
    def execution_time_ms(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds() * 1000
        return None

    def snapshot(self) -> "Task":
        """Copy safe to hand to callers; payload and result are shared"""
        return copy.copy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "priority": self.priority,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "result": self.result,
            "error": self.error,
            "worker_id": self.worker_id,
            "attempt": self.attempt,
            "retry_of": self.retry_of,
        }


@dataclass
class Worker:
    """One slot of the fixed-size execution pool"""
    id: str
    name: str
    status: WorkerStatus = field(default=WorkerStatus.IDLE)
    current_task_id: Optional[str] = None
    tasks_completed: int = 0
    tasks_failed: int = 0
    average_execution_time_ms: float = 0.0

    @classmethod
    def numbered(cls, number: int) -> "Worker":
        return cls(id=f"worker_{number}", name=f"Worker {number}")

    @property
    def is_idle(self) -> bool:
        return self.status == WorkerStatus.IDLE

    def assign(self, task_id: str) -> None:
        self.status = WorkerStatus.BUSY
        self.current_task_id = task_id

    def release(self) -> None:
        self.status = WorkerStatus.IDLE
        self.current_task_id = None

    def record_success(self, elapsed_ms: float) -> None:
        """Incremental mean over completed tasks"""
        self.tasks_completed += 1
        self.average_execution_time_ms += (
            (elapsed_ms - self.average_execution_time_ms) / self.tasks_completed
        )

    def record_failure(self) -> None:
        self.tasks_failed += 1

    def snapshot(self) -> "Worker":
        return copy.copy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "current_task_id": self.current_task_id,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "average_execution_time_ms": self.average_execution_time_ms,
        }


@dataclass
class SystemStatus:
    """Point-in-time view of the coordinator"""
    workers: List[Worker]
    queue_length: int
    active_tasks: int
    total_completed: int
    total_failed: int
    paused: bool
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workers": [w.to_dict() for w in self.workers],
            "queue_length": self.queue_length,
            "active_tasks": self.active_tasks,
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
            "paused": self.paused,
            "timestamp": self.timestamp.isoformat(),
        }
