#!/usr/bin/env python3
"""
CastQuest Load Simulator

Drives an in-process WorkerCoordinator with a synthetic workload (random
latencies, injected failures) and prints a JSON summary: throughput,
recovery outcomes and per-worker statistics.

    python scripts/load_simulator.py --tasks 500 --workers 8 --failure-rate 0.2 --seed 7
"""

import argparse
import asyncio
import json
import random
import sys
import time
from collections import Counter
from typing import Any, Dict, List, Optional

from src.brain import DecisionEngine
from src.coordination import Task, TaskHandlerRegistry, WorkerCoordinator
from src.events import CoreEvent

TASK_KINDS = ["frame_processing", "quest_validation", "mint_distribution"]


class SimulatedFailure(Exception):
    """Injected handler failure"""


class LoadSimulator:
    """Synthetic workload against a real coordinator and decision engine"""

    def __init__(
        self,
        task_count: int = 200,
        pool_size: int = 5,
        failure_rate: float = 0.1,
        max_latency: float = 0.05,
        max_attempts: Optional[int] = 3,
        seed: Optional[int] = None,
    ):
        self.task_count = task_count
        self.pool_size = pool_size
        self.failure_rate = failure_rate
        self.max_latency = max_latency
        self.max_attempts = max_attempts
        self.rng = random.Random(seed)

        self.event_counts: Counter = Counter()
        self.escalations: List[str] = []

    def _build_registry(self) -> TaskHandlerRegistry:
        registry = TaskHandlerRegistry()

        async def simulated_handler(payload: Dict[str, Any]) -> Dict[str, Any]:
            await asyncio.sleep(self.rng.uniform(0, self.max_latency))
            if self.rng.random() < self.failure_rate:
                raise SimulatedFailure(f"injected failure for item {payload['item']}")
            return {"item": payload["item"], "status": "ok"}

        for kind in TASK_KINDS:
            registry.register(kind, simulated_handler)
        return registry

    def _on_event(self, event: CoreEvent) -> None:
        self.event_counts[event.type.value] += 1

    def _on_escalation(self, task: Task, decision: Any) -> None:
        self.escalations.append(task.id)

    def _generate_payload(self, item: int) -> Dict[str, Any]:
        return {
            "item": item,
            "urgency": round(self.rng.random(), 2),
            "source": "load_simulator",
        }

    async def run(self) -> Dict[str, Any]:
        coordinator = WorkerCoordinator(
            brain=DecisionEngine(),
            handlers=self._build_registry(),
            pool_size=self.pool_size,
            notify=self._on_escalation,
            task_timeout=max(1.0, self.max_latency * 20),
            max_attempts=self.max_attempts,
        )
        coordinator.events.subscribe(self._on_event)

        started = time.perf_counter()
        for item in range(self.task_count):
            kind = self.rng.choice(TASK_KINDS)
            await coordinator.submit(kind, self._generate_payload(item))

        await coordinator.join()
        elapsed = time.perf_counter() - started
        await coordinator.events.flush()

        status = coordinator.system_status()
        return {
            "tasks_submitted": self.task_count,
            "workers": self.pool_size,
            "failure_rate": self.failure_rate,
            "elapsed_seconds": round(elapsed, 3),
            "throughput_per_second": round(status.total_completed / elapsed, 2) if elapsed > 0 else 0.0,
            "completed": status.total_completed,
            "failed_attempts": status.total_failed,
            "retried": self.event_counts["taskRetried"],
            "dropped": self.event_counts["taskDropped"],
            "escalated": len(self.escalations),
            "queue_length": status.queue_length,
            "per_worker": [
                {
                    "id": w.id,
                    "tasks_completed": w.tasks_completed,
                    "tasks_failed": w.tasks_failed,
                    "average_execution_time_ms": round(w.average_execution_time_ms, 2),
                }
                for w in status.workers
            ],
        }


async def run_simulation(
    tasks: int = 200,
    workers: int = 5,
    failure_rate: float = 0.1,
    seed: Optional[int] = None,
    max_latency: float = 0.05,
    max_attempts: Optional[int] = 3,
) -> Dict[str, Any]:
    simulator = LoadSimulator(
        task_count=tasks,
        pool_size=workers,
        failure_rate=failure_rate,
        max_latency=max_latency,
        max_attempts=max_attempts,
        seed=seed,
    )
    return await simulator.run()


def main():
    parser = argparse.ArgumentParser(description="CastQuest in-process load simulator")
    parser.add_argument("--tasks", type=int, default=200, help="Number of tasks to submit. Default: 200")
    parser.add_argument("--workers", type=int, default=5, help="Worker pool size. Default: 5")
    parser.add_argument(
        "--failure-rate",
        type=float,
        default=0.1,
        help="Probability that a handler call fails. Default: 0.1"
    )
    parser.add_argument(
        "--max-latency",
        type=float,
        default=0.05,
        help="Upper bound of simulated handler latency in seconds. Default: 0.05"
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=3,
        help="Attempts before forced escalation, 0 for unlimited. Default: 3"
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")

    args = parser.parse_args()
    if not 0.0 <= args.failure_rate <= 1.0:
        parser.error("--failure-rate must be between 0 and 1")

    try:
        summary = asyncio.run(run_simulation(
            tasks=args.tasks,
            workers=args.workers,
            failure_rate=args.failure_rate,
            seed=args.seed,
            max_latency=args.max_latency,
            max_attempts=args.max_attempts or None,
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(0)

    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
