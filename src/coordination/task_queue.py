# src/coordination/task_queue.py
"""
Priority task queue: highest priority first, FIFO among equal priorities.
"""

import heapq
import itertools
from typing import Dict, Iterator, List, Optional, Tuple

from src.coordination.models import Task


class PriorityTaskQueue:
    """
    Heap keyed by (-priority, sequence).

    The sequence number is taken at push time, so a retry lands at the tail
    of its priority bucket.
    """

    def __init__(self):
        self._heap: List[Tuple[float, int, Task]] = []
        self._index: Dict[str, Task] = {}
        self._sequence = itertools.count()

    def push(self, task: Task) -> None:
        heapq.heappush(self._heap, (-task.priority, next(self._sequence), task))
        self._index[task.id] = task

    def pop(self) -> Task:
        """Remove and return the highest-priority task. Raises IndexError when empty."""
        _, _, task = heapq.heappop(self._heap)
        del self._index[task.id]
        return task

    def pop_many(self, count: int) -> List[Task]:
        taken = []
        while self._heap and len(taken) < count:
            taken.append(self.pop())
        return taken

    def peek(self) -> Optional[Task]:
        return self._heap[0][2] if self._heap else None

    def get(self, task_id: str) -> Optional[Task]:
        return self._index.get(task_id)

    def ordered(self) -> List[Task]:
        """Tasks in scheduling order (does not modify the queue)"""
        return [entry[2] for entry in sorted(self._heap)]

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._index

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.ordered())
