# tests/test_scheduler.py
"""
Test suite for the Worker Coordination System

Tests:
1. Priority assignment across the pool (end-to-end scenario)
2. Exclusive worker binding and conservation of task counts
3. Recovery flow: retry decrement, skip, escalate, engine failure fallback
4. Prioritization through the decision engine
5. Deadlines, attempt caps, pause/resume and shutdown
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.brain import DecisionEngine
from src.coordination import TaskStatus, WorkerCoordinator, WorkerStatus
from src.errors import ConfigurationError, UnknownTaskKind
from src.events import EventType
from src.observability import get_correlation_id

from helpers import FixedScorer, NaNScorer, RaisingScorer, wait_for_condition


class Gate:
    """Handler that blocks each task until it is released by name"""

    def __init__(self):
        self._events = {}
        self.started = []

    def _event(self, name: str) -> asyncio.Event:
        return self._events.setdefault(name, asyncio.Event())

    def release(self, *names: str) -> None:
        for name in names:
            self._event(name).set()

    async def __call__(self, payload):
        name = payload["name"]
        self.started.append(name)
        await self._event(name).wait()
        return name


async def fail(payload):
    raise RuntimeError("boom")


async def succeed(payload):
    return "ok"


# =============================================================================
# Test: Construction
# =============================================================================

class TestCoordinatorConstruction:
    """Tests for construction-time validation"""

    def test_zero_pool_size_rejected(self, skip_brain):
        """A zero-size pool is a configuration error"""
        with pytest.raises(ConfigurationError):
            WorkerCoordinator(skip_brain, pool_size=0)

    def test_invalid_max_attempts_rejected(self, skip_brain):
        """max_attempts must be positive when set"""
        with pytest.raises(ConfigurationError):
            WorkerCoordinator(skip_brain, max_attempts=0)

    def test_workers_numbered_in_order(self, skip_brain):
        """Pool is worker_1..worker_N, all idle"""
        coordinator = WorkerCoordinator(skip_brain, pool_size=3)
        assert [w.id for w in coordinator.workers] == ["worker_1", "worker_2", "worker_3"]
        assert all(w.status == WorkerStatus.IDLE for w in coordinator.workers)

    def test_non_positive_timeout_disables_deadline(self, skip_brain):
        """A timeout of 0 means no deadline"""
        assert WorkerCoordinator(skip_brain, task_timeout=0).task_timeout is None


# =============================================================================
# Test: Scheduling
# =============================================================================

class TestScheduling:
    """Tests for assignment order and pool bounds"""

    @pytest.mark.asyncio
    async def test_priority_assignment_scenario(self, skip_brain):
        """B(9)→worker_1, A(5)→worker_2, C(1) waits and then takes worker_1"""
        gate = Gate()
        coordinator = WorkerCoordinator(skip_brain, {"work": gate}, pool_size=2)

        a = await coordinator.submit("work", {"name": "A"}, priority=5)
        b = await coordinator.submit("work", {"name": "B"}, priority=9)
        c = await coordinator.submit("work", {"name": "C"}, priority=1)

        # Nothing is assigned until the loop runs the pass
        assert coordinator.status(a).status == TaskStatus.PENDING
        assert coordinator.status(b).status == TaskStatus.PENDING

        await wait_for_condition(lambda: len(gate.started) == 2)
        assert coordinator.status(b).status == TaskStatus.RUNNING
        assert coordinator.status(b).worker_id == "worker_1"
        assert coordinator.status(a).status == TaskStatus.RUNNING
        assert coordinator.status(a).worker_id == "worker_2"
        assert coordinator.status(c).status == TaskStatus.PENDING

        gate.release("B")
        await wait_for_condition(lambda: coordinator.status(c).status == TaskStatus.RUNNING)
        assert coordinator.status(c).worker_id == "worker_1"
        assert coordinator.status(b).status == TaskStatus.COMPLETED

        gate.release("A", "C")
        await coordinator.join()
        for task_id in (a, b, c):
            assert coordinator.status(task_id).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_execution_follows_priority_then_fifo(self, skip_brain):
        """A single worker drains the queue by priority, ties in submission order"""
        gate = Gate()
        order = []

        async def record(payload):
            order.append(payload["name"])

        coordinator = WorkerCoordinator(skip_brain, {"block": gate, "record": record}, pool_size=1)
        await coordinator.submit("block", {"name": "blocker"}, priority=10)
        await wait_for_condition(lambda: gate.started == ["blocker"])

        for name, priority in [("low", 1), ("high-1", 5), ("mid", 3), ("high-2", 5)]:
            await coordinator.submit("record", {"name": name}, priority=priority)

        assert [t.payload["name"] for t in coordinator.pending_tasks()] == ["high-1", "high-2", "mid", "low"]

        gate.release("blocker")
        await coordinator.join()
        assert order == ["high-1", "high-2", "mid", "low"]

    @pytest.mark.asyncio
    async def test_running_never_exceeds_pool_and_bindings_are_exclusive(self, skip_brain):
        """Busy workers hold distinct tasks; idle workers hold none"""
        active = 0
        peak = 0
        coordinator = WorkerCoordinator(skip_brain, pool_size=3)

        async def observe(payload):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            status = coordinator.system_status()
            busy = [w for w in status.workers if w.status == WorkerStatus.BUSY]
            idle = [w for w in status.workers if w.status == WorkerStatus.IDLE]
            assert all(w.current_task_id for w in busy)
            assert all(w.current_task_id is None for w in idle)
            assert len({w.current_task_id for w in busy}) == len(busy)
            await asyncio.sleep(0.002)
            active -= 1

        coordinator.handlers.register("observe", observe)
        for i in range(20):
            await coordinator.submit("observe", {"i": i}, priority=i % 4)

        await coordinator.join()
        status = coordinator.system_status()
        assert peak == 3
        assert status.total_completed == 20
        assert status.total_failed == 0
        assert status.active_tasks == 0

    @pytest.mark.asyncio
    async def test_completed_plus_failed_equals_started(self, skip_brain):
        """Every task that reached running is counted exactly once"""
        started = []

        def on_event(event):
            if event.type == EventType.TASK_STARTED:
                started.append(event.data["task_id"])

        async def mixed(payload):
            await asyncio.sleep(0)
            if payload["i"] % 3 == 0:
                raise ValueError("bad item")
            return payload["i"]

        coordinator = WorkerCoordinator(skip_brain, {"mixed": mixed}, pool_size=4)
        coordinator.events.subscribe(on_event)
        for i in range(15):
            await coordinator.submit("mixed", {"i": i}, priority=1)

        await coordinator.join()
        await coordinator.events.flush()

        status = coordinator.system_status()
        assert status.total_completed + status.total_failed == len(started) == 15
        assert status.total_failed == 5
        assert sum(w.tasks_completed + w.tasks_failed for w in status.workers) == 15

    @pytest.mark.asyncio
    async def test_worker_statistics(self, skip_brain):
        """Completions update the worker's count and mean execution time"""
        coordinator = WorkerCoordinator(skip_brain, {"ok": succeed}, pool_size=1)
        for _ in range(3):
            await coordinator.submit("ok", None, priority=1)
        await coordinator.join()

        worker = coordinator.system_status().workers[0]
        assert worker.tasks_completed == 3
        assert worker.tasks_failed == 0
        assert worker.average_execution_time_ms >= 0
        assert worker.status == WorkerStatus.IDLE

    @pytest.mark.asyncio
    async def test_plain_function_handlers(self, skip_brain):
        """Non-coroutine handlers run and their return value is stored"""
        coordinator = WorkerCoordinator(skip_brain, {"sum": lambda payload: sum(payload)})
        task_id = await coordinator.submit("sum", [1, 2, 3], priority=1)
        await coordinator.join()

        task = coordinator.status(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == 6


# =============================================================================
# Test: Submission
# =============================================================================

class TestSubmission:
    """Tests for submit validation and prioritization"""

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected_before_anything_else(self):
        """UnknownTaskKind is raised and nothing is queued or scored"""
        scorer = FixedScorer({"work": 0.5})
        coordinator = WorkerCoordinator(DecisionEngine(scorer=scorer), {"work": succeed})

        with pytest.raises(UnknownTaskKind) as exc_info:
            await coordinator.submit("nope", {})

        assert exc_info.value.kind == "nope"
        assert exc_info.value.error_code == "UNKNOWN_TASK_KIND"
        assert scorer.calls == 0
        assert coordinator.system_status().queue_length == 0
        assert coordinator.total_submitted == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("priority", [-1, float("nan"), float("inf"), "high"])
    async def test_invalid_priority_rejected(self, skip_brain, priority):
        """Explicit priorities must be finite and non-negative"""
        coordinator = WorkerCoordinator(skip_brain, {"work": succeed})
        with pytest.raises(ValueError):
            await coordinator.submit("work", {}, priority=priority)
        assert coordinator.pending_tasks() == []

    @pytest.mark.asyncio
    async def test_priority_from_decision_confidence(self):
        """Without a priority, confidence × scale is used"""
        brain = DecisionEngine(scorer=FixedScorer({"work": 0.8}))
        coordinator = WorkerCoordinator(brain, {"work": succeed})
        coordinator.pause()

        task_id = await coordinator.submit("work", {"x": 1})
        assert coordinator.status(task_id).priority == pytest.approx(8.0)

        decision = brain.get_decisions()[-1]
        assert decision.context == "task_prioritization"
        assert decision.chosen == {"kind": "work", "payload": {"x": 1}}

    @pytest.mark.asyncio
    async def test_priority_scale_is_configurable(self):
        """priority_scale multiplies the confidence"""
        brain = DecisionEngine(scorer=FixedScorer({"work": 0.25}))
        coordinator = WorkerCoordinator(brain, {"work": succeed}, priority_scale=100)
        coordinator.pause()

        task_id = await coordinator.submit("work", None)
        assert coordinator.status(task_id).priority == pytest.approx(25.0)

    @pytest.mark.asyncio
    async def test_default_scorer_prioritizes_known_kinds(self):
        """The heuristic profile for mint_distribution yields priority 7.8"""
        coordinator = WorkerCoordinator(DecisionEngine(), {"mint_distribution": succeed})
        coordinator.pause()

        task_id = await coordinator.submit("mint_distribution", {})
        assert coordinator.status(task_id).priority == pytest.approx(7.8)

    @pytest.mark.asyncio
    async def test_engine_failure_uses_default_priority(self):
        """A DecisionEngineError during prioritization falls back to the default"""
        coordinator = WorkerCoordinator(
            DecisionEngine(scorer=NaNScorer()), {"work": succeed}, default_priority=5
        )
        coordinator.pause()

        task_id = await coordinator.submit("work", {})
        assert coordinator.status(task_id).priority == 5

    @pytest.mark.asyncio
    async def test_status_unknown_id_returns_none(self, skip_brain):
        """Unknown ids are reported as None"""
        coordinator = WorkerCoordinator(skip_brain)
        assert coordinator.status("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_status_returns_snapshot(self, skip_brain):
        """Mutating the returned task does not change the scheduler's copy"""
        coordinator = WorkerCoordinator(skip_brain, {"work": succeed})
        coordinator.pause()
        task_id = await coordinator.submit("work", {}, priority=4)

        snapshot = coordinator.status(task_id)
        snapshot.priority = 99
        assert coordinator.status(task_id).priority == 4


# =============================================================================
# Test: Recovery
# =============================================================================

class TestRecovery:
    """Tests for the failure recovery decision flow"""

    @pytest.mark.asyncio
    async def test_retry_chain_floors_at_zero(self, retry_brain):
        """Priority 3 fails into 2, 1, 0 and a fourth failure stays at 0"""
        coordinator = WorkerCoordinator(retry_brain, pool_size=1)
        calls = 0

        async def always_fails(payload):
            nonlocal calls
            calls += 1
            if calls == 4:
                coordinator.pause()
            raise RuntimeError(f"failure {calls}")

        coordinator.handlers.register("flaky", always_fails)

        retries = {}

        def on_event(event):
            if event.type == EventType.TASK_RETRIED:
                retries[event.data["task_id"]] = event.data["retry_id"]

        coordinator.events.subscribe(on_event)

        original = await coordinator.submit("flaky", {}, priority=3)
        await coordinator.join()
        await coordinator.events.flush()

        chain = [original]
        while chain[-1] in retries:
            chain.append(retries[chain[-1]])
        assert len(chain) == 5

        failed = [coordinator.status(task_id) for task_id in chain[:4]]
        assert [t.status for t in failed] == [TaskStatus.FAILED] * 4
        assert [t.priority for t in failed] == [3, 2, 1, 0]
        assert [t.attempt for t in failed] == [1, 2, 3, 4]
        assert all(t.error.startswith("failure") for t in failed)

        pending = coordinator.pending_tasks()
        assert len(pending) == 1
        assert pending[0].id == chain[4]
        assert pending[0].priority == 0
        assert pending[0].status == TaskStatus.PENDING
        assert pending[0].retry_of == chain[3]
        assert calls == 4

    @pytest.mark.asyncio
    async def test_skip_drops_task(self, skip_brain):
        """skip leaves the failed task visible and queues nothing"""
        dropped = []
        coordinator = WorkerCoordinator(skip_brain, {"fail": fail})
        coordinator.events.subscribe(
            lambda e: dropped.append(e.data["task_id"]) if e.type == EventType.TASK_DROPPED else None
        )

        task_id = await coordinator.submit("fail", {}, priority=2)
        await coordinator.join()
        await coordinator.events.flush()

        task = coordinator.status(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.error == "boom"
        assert coordinator.pending_tasks() == []
        assert dropped == [task_id]
        assert coordinator.system_status().workers[0].tasks_failed == 1

    @pytest.mark.asyncio
    async def test_escalate_notifies_sink(self, escalate_brain):
        """escalate drops the task and calls notify(task, decision)"""
        notifications = []
        escalated = []
        coordinator = WorkerCoordinator(
            escalate_brain, {"fail": fail}, notify=lambda task, decision: notifications.append((task, decision))
        )
        coordinator.events.subscribe(
            lambda e: escalated.append(e.data["task_id"]) if e.type == EventType.TASK_ESCALATED else None
        )

        task_id = await coordinator.submit("fail", {"order": 7}, priority=2)
        await coordinator.join()
        await coordinator.events.flush()

        assert len(notifications) == 1
        task, decision = notifications[0]
        assert task.id == task_id
        assert task.status == TaskStatus.FAILED
        assert decision.context == "error_recovery"
        assert decision.chosen["action"] == "escalate"
        assert escalated == [task_id]
        assert coordinator.pending_tasks() == []

    @pytest.mark.asyncio
    async def test_async_notification_sink_awaited(self, escalate_brain):
        """Coroutine notification sinks are awaited"""
        notify = AsyncMock()
        coordinator = WorkerCoordinator(escalate_brain, {"fail": fail}, notify=notify)

        await coordinator.submit("fail", {}, priority=1)
        await coordinator.join()

        assert notify.await_count == 1

    @pytest.mark.asyncio
    async def test_failing_notification_sink_is_contained(self, escalate_brain):
        """A broken sink does not stop the scheduler"""
        notify = AsyncMock(side_effect=ConnectionError("redis down"))
        coordinator = WorkerCoordinator(escalate_brain, {"fail": fail, "ok": succeed}, notify=notify, pool_size=1)

        await coordinator.submit("fail", {}, priority=5)
        ok_id = await coordinator.submit("ok", {}, priority=1)
        await coordinator.join()

        assert coordinator.status(ok_id).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_decision_engine_failure_falls_back_to_skip(self):
        """A scorer failure during recovery behaves like skip"""
        brain = DecisionEngine(scorer=RaisingScorer())
        coordinator = WorkerCoordinator(brain, {"fail": fail, "ok": succeed}, pool_size=1)

        failed_id = await coordinator.submit("fail", {}, priority=5)
        ok_id = await coordinator.submit("ok", {}, priority=1)
        await coordinator.join()

        assert coordinator.status(failed_id).status == TaskStatus.FAILED
        assert coordinator.status(ok_id).status == TaskStatus.COMPLETED
        assert coordinator.pending_tasks() == []
        assert brain.get_decisions() == []

    @pytest.mark.asyncio
    async def test_default_scorer_escalates_after_repeated_failures(self):
        """The heuristic policy retries twice, then escalates"""
        notifications = []
        coordinator = WorkerCoordinator(
            DecisionEngine(), {"fail": fail}, pool_size=1,
            notify=lambda task, decision: notifications.append(task),
        )

        await coordinator.submit("fail", {}, priority=5)
        await coordinator.join()

        assert coordinator.total_failed == 3
        assert len(notifications) == 1
        assert notifications[0].attempt == 3
        assert notifications[0].priority == 3

    @pytest.mark.asyncio
    async def test_max_attempts_forces_escalation(self, retry_brain):
        """Reaching max_attempts escalates without consulting the engine"""
        notifications = []
        coordinator = WorkerCoordinator(
            retry_brain, {"fail": fail}, max_attempts=2,
            notify=lambda task, decision: notifications.append((task, decision)),
        )

        await coordinator.submit("fail", {}, priority=5)
        await coordinator.join()

        assert coordinator.total_failed == 2
        assert len(notifications) == 1
        task, decision = notifications[0]
        assert task.attempt == 2
        assert decision is None
        assert len(retry_brain.get_decisions()) == 1

    @pytest.mark.asyncio
    async def test_handler_cancellation_goes_through_recovery(self, retry_brain):
        """A CancelledError raised by the handler itself is a failure, not a shutdown"""
        calls = []

        async def cancelled_once(payload):
            calls.append(payload)
            if len(calls) == 1:
                raise asyncio.CancelledError()
            return "recovered"

        coordinator = WorkerCoordinator(retry_brain, {"flaky": cancelled_once}, pool_size=1)
        task_id = await coordinator.submit("flaky", {}, priority=3)
        await coordinator.join()

        original = coordinator.status(task_id)
        assert original.status == TaskStatus.FAILED
        assert original.error == "Handler cancelled"
        assert len(retry_brain.get_decisions()) == 1
        assert coordinator.total_completed == 1
        assert not coordinator.paused
        assert len(calls) == 2


# =============================================================================
# Test: Deadlines, Pause/Resume, Shutdown
# =============================================================================

class TestExecutionControl:
    """Tests for deadlines and scheduler control"""

    @pytest.mark.asyncio
    async def test_deadline_expiry_fails_task(self, skip_brain):
        """A handler past its deadline fails with TASK_TIMEOUT"""
        failures = []

        async def slow(payload):
            await asyncio.sleep(5)

        coordinator = WorkerCoordinator(skip_brain, {"slow": slow}, task_timeout=0.05)
        coordinator.events.subscribe(
            lambda e: failures.append(e.data["error"]) if e.type == EventType.TASK_FAILED else None
        )

        task_id = await coordinator.submit("slow", {}, priority=1)
        await coordinator.join()
        await coordinator.events.flush()

        task = coordinator.status(task_id)
        assert task.status == TaskStatus.FAILED
        assert "deadline" in task.error
        assert failures[0]["error_code"] == "TASK_TIMEOUT"

    @pytest.mark.asyncio
    async def test_handler_timeout_is_not_deadline_expiry(self, skip_brain):
        """A TimeoutError raised by the handler keeps its own message"""
        failures = []

        async def socket_read(payload):
            raise TimeoutError("read timed out")

        coordinator = WorkerCoordinator(skip_brain, {"read": socket_read}, task_timeout=5)
        coordinator.events.subscribe(
            lambda e: failures.append(e.data["error"]) if e.type == EventType.TASK_FAILED else None
        )

        task_id = await coordinator.submit("read", {}, priority=1)
        await coordinator.join()
        await coordinator.events.flush()

        assert coordinator.status(task_id).error == "read timed out"
        assert failures[0]["error_code"] == "TASK_EXECUTION_ERROR"

    @pytest.mark.asyncio
    async def test_pause_holds_queue_and_resume_drains_it(self, skip_brain):
        """Paused scheduler keeps tasks pending until resume"""
        coordinator = WorkerCoordinator(skip_brain, {"ok": succeed})
        coordinator.pause()

        ids = [await coordinator.submit("ok", {}, priority=1) for _ in range(2)]
        await asyncio.sleep(0.01)
        assert all(coordinator.status(i).status == TaskStatus.PENDING for i in ids)
        assert coordinator.system_status().paused is True

        coordinator.resume()
        await coordinator.join()
        assert all(coordinator.status(i).status == TaskStatus.COMPLETED for i in ids)
        assert coordinator.system_status().paused is False

    @pytest.mark.asyncio
    async def test_pause_keeps_running_tasks(self, skip_brain):
        """In-flight work finishes while paused"""
        gate = Gate()
        coordinator = WorkerCoordinator(skip_brain, {"work": gate})
        task_id = await coordinator.submit("work", {"name": "inflight"}, priority=1)
        await wait_for_condition(lambda: gate.started == ["inflight"])

        coordinator.pause()
        gate.release("inflight")
        await coordinator.join()
        assert coordinator.status(task_id).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_running_tasks(self, skip_brain):
        """shutdown(wait=True) lets in-flight tasks complete"""
        gate = Gate()
        coordinator = WorkerCoordinator(skip_brain, {"work": gate})
        task_id = await coordinator.submit("work", {"name": "job"}, priority=1)
        await wait_for_condition(lambda: gate.started == ["job"])

        shutdown = asyncio.create_task(coordinator.shutdown(wait=True))
        await asyncio.sleep(0.01)
        assert not shutdown.done()

        gate.release("job")
        await shutdown
        assert coordinator.status(task_id).status == TaskStatus.COMPLETED
        assert coordinator.paused

    @pytest.mark.asyncio
    async def test_shutdown_without_wait_cancels(self, skip_brain):
        """shutdown(wait=False) cancels in-flight tasks and frees workers"""
        gate = Gate()
        coordinator = WorkerCoordinator(skip_brain, {"work": gate})
        task_id = await coordinator.submit("work", {"name": "stuck"}, priority=1)
        await wait_for_condition(lambda: gate.started == ["stuck"])

        await coordinator.shutdown(wait=False)

        task = coordinator.status(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.error == "Cancelled during shutdown"
        assert all(w.status == WorkerStatus.IDLE for w in coordinator.system_status().workers)

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, skip_brain):
        """Finished tasks beyond history_limit are forgotten"""
        coordinator = WorkerCoordinator(skip_brain, {"ok": succeed}, pool_size=1, history_limit=2)
        ids = [await coordinator.submit("ok", {}, priority=3 - i) for i in range(3)]
        await coordinator.join()

        assert coordinator.status(ids[0]) is None
        assert coordinator.status(ids[1]).status == TaskStatus.COMPLETED
        assert coordinator.status(ids[2]).status == TaskStatus.COMPLETED


# =============================================================================
# Test: Observability
# =============================================================================

class TestObservability:
    """Tests for emitted events and correlation ids"""

    @pytest.mark.asyncio
    async def test_lifecycle_events_in_order(self, skip_brain):
        """A successful task emits submitted, started, completed"""
        seen = []
        coordinator = WorkerCoordinator(skip_brain, {"ok": succeed})
        coordinator.events.subscribe(lambda e: seen.append((e.type, e.data["task_id"])))

        task_id = await coordinator.submit("ok", {}, priority=1)
        await coordinator.join()
        await coordinator.events.flush()

        assert seen == [
            (EventType.TASK_SUBMITTED, task_id),
            (EventType.TASK_STARTED, task_id),
            (EventType.TASK_COMPLETED, task_id),
        ]

    @pytest.mark.asyncio
    async def test_handler_runs_under_task_correlation_id(self, skip_brain):
        """The task id is the correlation id while its handler runs"""
        captured = []

        async def capture(payload):
            captured.append(get_correlation_id())

        coordinator = WorkerCoordinator(skip_brain, {"capture": capture})
        task_id = await coordinator.submit("capture", {}, priority=1)
        await coordinator.join()

        assert captured == [task_id]
        assert get_correlation_id() == "no-corr-id"
