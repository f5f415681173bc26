"""
Worker Coordination System
Priority task queue, fixed worker pool and failure recovery.
"""

from .models import (
    Task,
    TaskStatus,
    Worker,
    WorkerStatus,
    SystemStatus,
    VALID_TASK_TRANSITIONS,
)
from .task_queue import PriorityTaskQueue
from .handlers import TaskHandler, TaskHandlerRegistry
from .scheduler import WorkerCoordinator, RECOVERY_ACTIONS

__all__ = [
    # Scheduler
    "WorkerCoordinator",
    "RECOVERY_ACTIONS",
    # Handlers
    "TaskHandler",
    "TaskHandlerRegistry",
    # Queue
    "PriorityTaskQueue",
    # Records
    "Task",
    "TaskStatus",
    "Worker",
    "WorkerStatus",
    "SystemStatus",
    "VALID_TASK_TRANSITIONS",
]
