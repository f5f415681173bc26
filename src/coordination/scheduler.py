# src/coordination/scheduler.py
"""
Worker Coordination System

Accepts tasks, keeps them in a priority queue, hands them to a fixed pool of
workers and decides what happens to failures.

Scheduling:
  - a pass pairs the top K pending tasks with the K idle workers, in
    worker-id order
  - passes run after submit, after resume and after every task finishes
  - triggers arriving in the same loop iteration collapse into one pass,
    and the pass body never awaits, so passes are serialized by the loop

Recovery (failed task):
  - the decision engine picks retry / skip / escalate
  - retry enqueues a new task one priority step lower
  - escalate drops the task and calls the notification sink
  - a decision engine failure is treated as skip
"""

import asyncio
import inspect
import logging
import math
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from src.brain import Decision, DecisionEngine
from src.coordination.handlers import TaskHandler, TaskHandlerRegistry
from src.coordination.models import SystemStatus, Task, TaskStatus, Worker
from src.coordination.task_queue import PriorityTaskQueue
from src.errors import (
    ConfigurationError,
    DecisionEngineError,
    TaskExecutionError,
    TaskTimeoutError,
    UnknownTaskKind,
)
from src.events import EventStream, EventType
from src.observability import correlation_scope

logger = logging.getLogger("castquest.scheduler")

RECOVERY_ACTIONS = ("retry", "skip", "escalate")
DEFAULT_POOL_SIZE = 5
DEFAULT_TASK_TIMEOUT = 300.0
DEFAULT_PRIORITY = 5.0
DEFAULT_PRIORITY_SCALE = 10.0
DEFAULT_HISTORY_LIMIT = 1000

NotificationSink = Callable[[Task, Optional[Decision]], Union[Awaitable[None], None]]


class WorkerCoordinator:
    """
    Priority scheduler over a fixed-size worker pool.

    Handlers are looked up by task kind. Coroutine handlers run under the
    per-task deadline; plain callables run inline on the event loop and
    should return quickly.
    """

    def __init__(
        self,
        brain: DecisionEngine,
        handlers: Union[TaskHandlerRegistry, Mapping[str, TaskHandler], None] = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        notify: Optional[NotificationSink] = None,
        task_timeout: Optional[float] = DEFAULT_TASK_TIMEOUT,
        max_attempts: Optional[int] = None,
        default_priority: float = DEFAULT_PRIORITY,
        priority_scale: float = DEFAULT_PRIORITY_SCALE,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        events: Optional[EventStream] = None,
    ):
        if pool_size < 1:
            raise ConfigurationError("Worker pool size must be at least 1", pool_size=pool_size)
        if max_attempts is not None and max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", max_attempts=max_attempts)
        if history_limit < 1:
            raise ConfigurationError("history_limit must be at least 1", history_limit=history_limit)

        self.brain = brain
        if isinstance(handlers, TaskHandlerRegistry):
            self.handlers = handlers
        else:
            self.handlers = TaskHandlerRegistry(dict(handlers or {}))
        self.notify = notify
        self.task_timeout = task_timeout if task_timeout and task_timeout > 0 else None
        self.max_attempts = max_attempts
        self.default_priority = default_priority
        self.priority_scale = priority_scale
        self.history_limit = history_limit
        self.events = events or EventStream("scheduler")

        self.workers: List[Worker] = [Worker.numbered(n) for n in range(1, pool_size + 1)]
        self._queue = PriorityTaskQueue()
        self._running: Dict[str, Task] = {}
        self._executions: Dict[str, asyncio.Task] = {}
        self._cancelling: Set[str] = set()
        self._history: "OrderedDict[str, Task]" = OrderedDict()

        self._paused = False
        self._pass_scheduled = False
        self._state_changed = asyncio.Event()

        self.total_submitted = 0
        self.total_completed = 0
        self.total_failed = 0

        logger.info(
            f"WorkerCoordinator initialized | workers={pool_size} | "
            f"timeout={self.task_timeout} | max_attempts={self.max_attempts}"
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def submit(self, kind: str, payload: Any = None, priority: Optional[float] = None) -> str:
        """
        Queue a task and return its id without waiting for execution.

        Raises:
            UnknownTaskKind: no handler registered for kind
        """
        if kind not in self.handlers:
            raise UnknownTaskKind(kind, self.handlers.kinds())

        if priority is None:
            priority = await self._prioritize(kind, payload)
        elif (
            isinstance(priority, bool)
            or not isinstance(priority, (int, float))
            or not math.isfinite(priority)
            or priority < 0
        ):
            raise ValueError(f"priority must be a finite non-negative number, got {priority!r}")

        task = Task(kind=kind, payload=payload, priority=float(priority))
        self._queue.push(task)
        self.total_submitted += 1

        logger.info(f"Task submitted | task_id={task.id} | kind={kind} | priority={task.priority:.2f}")
        self.events.emit(EventType.TASK_SUBMITTED, task_id=task.id, kind=kind, priority=task.priority)

        self._request_pass()
        return task.id

    def status(self, task_id: str) -> Optional[Task]:
        """Snapshot of a task, or None when the id is unknown or evicted"""
        task = self._running.get(task_id) or self._queue.get(task_id) or self._history.get(task_id)
        return task.snapshot() if task else None

    def system_status(self) -> SystemStatus:
        return SystemStatus(
            workers=[w.snapshot() for w in self.workers],
            queue_length=len(self._queue),
            active_tasks=len(self._running),
            total_completed=self.total_completed,
            total_failed=self.total_failed,
            paused=self._paused,
        )

    def pending_tasks(self) -> List[Task]:
        """Queued tasks in the order they would be scheduled"""
        return [t.snapshot() for t in self._queue.ordered()]

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        """Stop assigning tasks. Queued and running work is kept."""
        if self._paused:
            return
        self._paused = True
        logger.info(f"Scheduler paused | queued={len(self._queue)} | running={len(self._running)}")
        self.events.emit(EventType.SYSTEM_PAUSED, queued=len(self._queue), running=len(self._running))
        self._signal_state_change()

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        logger.info(f"Scheduler resumed | queued={len(self._queue)}")
        self.events.emit(EventType.SYSTEM_RESUMED, queued=len(self._queue))
        self._request_pass()

    async def join(self) -> None:
        """Wait until nothing is running and no further assignment is possible"""
        while not self._is_settled():
            self._state_changed.clear()
            await self._state_changed.wait()

    async def shutdown(self, wait: bool = True) -> None:
        """
        Pause scheduling, then wait for in-flight tasks (or cancel them when
        wait is False). Queued tasks are kept.
        """
        self.pause()
        executions = list(self._executions.values())
        if not wait:
            for task_id, execution in self._executions.items():
                self._cancelling.add(task_id)
                execution.cancel()
        if executions:
            await asyncio.gather(*executions, return_exceptions=True)
        logger.info(
            f"Scheduler shut down | completed={self.total_completed} | "
            f"failed={self.total_failed} | queued={len(self._queue)}"
        )

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _request_pass(self) -> None:
        if self._pass_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside a loop: the next submit or completion triggers the pass
            return
        self._pass_scheduled = True
        loop.call_soon(self._run_pass)

    def _run_pass(self) -> None:
        self._pass_scheduled = False
        if not self._paused:
            idle_workers = [w for w in self.workers if w.is_idle]
            if idle_workers and self._queue:
                for worker, task in zip(idle_workers, self._queue.pop_many(len(idle_workers))):
                    self._assign(worker, task)
        self._signal_state_change()

    def _assign(self, worker: Worker, task: Task) -> None:
        task.start(worker.id)
        worker.assign(task.id)
        self._running[task.id] = task
        self._executions[task.id] = asyncio.get_running_loop().create_task(
            self._execute(worker, task), name=f"task-{task.id}"
        )
        logger.debug(f"Task assigned | task_id={task.id} | worker={worker.id} | priority={task.priority:.2f}")
        self.events.emit(EventType.TASK_STARTED, task_id=task.id, kind=task.kind, worker_id=worker.id)

    def _is_settled(self) -> bool:
        return (
            not self._running
            and not self._pass_scheduled
            and (self._paused or not self._queue)
        )

    def _signal_state_change(self) -> None:
        self._state_changed.set()

    async def _prioritize(self, kind: str, payload: Any) -> float:
        try:
            decision = await self.brain.decide("task_prioritization", [{"kind": kind, "payload": payload}])
        except DecisionEngineError as e:
            logger.warning(f"Prioritization failed, using default | kind={kind} | error={e.message}")
            return self.default_priority
        return decision.confidence * self.priority_scale

    # =========================================================================
    # Execution
    # =========================================================================

    async def _execute(self, worker: Worker, task: Task) -> None:
        try:
            with correlation_scope(task.id):
                await self._run_and_record(worker, task)
        finally:
            self._release(worker, task)
            self._request_pass()

    async def _run_and_record(self, worker: Worker, task: Task) -> None:
        start = time.perf_counter()
        try:
            result = await self._invoke_handler(task)
        except TaskExecutionError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            await self._on_failure(worker, task, e, elapsed_ms)
        except asyncio.CancelledError as e:
            if task.id in self._cancelling:
                if task.status == TaskStatus.RUNNING:
                    task.fail("Cancelled during shutdown")
                    worker.record_failure()
                    self.total_failed += 1
                raise
            # Cancellation the scheduler did not request is a handler failure
            elapsed_ms = (time.perf_counter() - start) * 1000
            error = TaskExecutionError(task.id, "Handler cancelled", original_error=e)
            await self._on_failure(worker, task, error, elapsed_ms)
        else:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self._on_success(worker, task, result, elapsed_ms)

    async def _invoke_handler(self, task: Task) -> Any:
        """Run the handler, converting every escaping exception to TaskExecutionError"""
        try:
            outcome = self.handlers.get(task.kind)(task.payload)
            if not inspect.isawaitable(outcome):
                return outcome
            if self.task_timeout is None:
                return await outcome
            try:
                return await asyncio.wait_for(self._guard_timeouts(task, outcome), timeout=self.task_timeout)
            except asyncio.TimeoutError:
                raise TaskTimeoutError(task.id, self.task_timeout) from None
        except TaskExecutionError:
            raise
        except Exception as e:
            raise TaskExecutionError(
                task.id, str(e) or type(e).__name__, original_error=e
            ) from e

    @staticmethod
    async def _guard_timeouts(task: Task, outcome: Awaitable[Any]) -> Any:
        """Keep a handler's own TimeoutError apart from the scheduler deadline"""
        try:
            return await outcome
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise TaskExecutionError(
                task.id, str(e) or type(e).__name__, original_error=e
            ) from e

    def _on_success(self, worker: Worker, task: Task, result: Any, elapsed_ms: float) -> None:
        task.complete(result)
        worker.record_success(elapsed_ms)
        self.total_completed += 1
        logger.info(
            f"Task completed | task_id={task.id} | kind={task.kind} | "
            f"worker={worker.id} | time_ms={elapsed_ms:.1f}"
        )
        self.events.emit(
            EventType.TASK_COMPLETED, task_id=task.id, kind=task.kind,
            worker_id=worker.id, execution_time_ms=elapsed_ms,
        )

    async def _on_failure(self, worker: Worker, task: Task, error: TaskExecutionError, elapsed_ms: float) -> None:
        task.fail(error.message)
        worker.record_failure()
        self.total_failed += 1
        logger.warning(
            f"Task failed | task_id={task.id} | kind={task.kind} | worker={worker.id} | "
            f"attempt={task.attempt} | error_code={error.error_code} | error={error.message}"
        )
        self.events.emit(
            EventType.TASK_FAILED, task_id=task.id, kind=task.kind, worker_id=worker.id,
            attempt=task.attempt, error=error.to_dict(), execution_time_ms=elapsed_ms,
        )

        action, decision = await self._decide_recovery(task)
        await self._apply_recovery(task, action, decision)

    # =========================================================================
    # Recovery
    # =========================================================================

    async def _decide_recovery(self, task: Task) -> Tuple[str, Optional[Decision]]:
        if self.max_attempts is not None and task.attempt >= self.max_attempts:
            logger.warning(f"Attempt limit reached | task_id={task.id} | attempts={task.attempt}")
            return "escalate", None

        failed = task.snapshot()
        options = [{"action": action, "task": failed} for action in RECOVERY_ACTIONS]
        try:
            decision = await self.brain.decide("error_recovery", options)
        except DecisionEngineError as e:
            logger.error(f"Recovery decision failed, skipping task | task_id={task.id} | error={e.message}")
            return "skip", None
        return decision.chosen["action"], decision

    async def _apply_recovery(self, task: Task, action: str, decision: Optional[Decision]) -> None:
        if action == "retry":
            retry = task.spawn_retry()
            self._queue.push(retry)
            logger.info(
                f"Task retried | task_id={task.id} | retry_id={retry.id} | "
                f"attempt={retry.attempt} | priority={retry.priority:.2f}"
            )
            self.events.emit(
                EventType.TASK_RETRIED, task_id=task.id, retry_id=retry.id,
                attempt=retry.attempt, priority=retry.priority,
            )
        elif action == "escalate":
            logger.warning(f"Task escalated | task_id={task.id} | kind={task.kind} | attempt={task.attempt}")
            self.events.emit(
                EventType.TASK_ESCALATED, task_id=task.id, kind=task.kind,
                decision_id=decision.id if decision else None,
            )
            await self._send_notification(task, decision)
        else:
            logger.info(f"Task dropped | task_id={task.id} | kind={task.kind}")
            self.events.emit(EventType.TASK_DROPPED, task_id=task.id, kind=task.kind)

    async def _send_notification(self, task: Task, decision: Optional[Decision]) -> None:
        if self.notify is None:
            return
        try:
            outcome = self.notify(task.snapshot(), decision)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Escalation notification failed | task_id={task.id} | error={e}")

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _release(self, worker: Worker, task: Task) -> None:
        worker.release()
        self._running.pop(task.id, None)
        self._executions.pop(task.id, None)
        self._cancelling.discard(task.id)
        self._history[task.id] = task
        while len(self._history) > self.history_limit:
            self._history.popitem(last=False)
        self._signal_state_change()
