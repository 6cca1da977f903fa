# -*- coding: utf-8 -*-
"""
Recompute Queue - RiskGuard Tolerance Monitor

Explicit dispatch of residual recompute tasks. A change to a risk-control
link publishes a ``RecomputeResidualTask``; subscribed handlers (the
residual calculator) consume it. In synchronous mode a task is delivered
as soon as it is published; otherwise it waits for ``drain()``.

Tasks whose handler fails are moved to a dead-letter list and can be
replayed.

Example:
    >>> queue = RecomputeQueue()
    >>> queue.subscribe(lambda task: print(task.risk_id))
    >>> queue.publish(RecomputeResidualTask(risk_id="R-1", reason="link_added"))

Author: RiskGuard Platform Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, List

from riskguard.tolerance_monitor.models import RecomputeResidualTask

logger = logging.getLogger(__name__)

TaskHandler = Callable[[RecomputeResidualTask], Any]


class RecomputeQueue:
    """In-process queue of residual recompute tasks."""

    def __init__(self, synchronous: bool = True) -> None:
        self.synchronous = synchronous
        self._pending: Deque[RecomputeResidualTask] = deque()
        self._handlers: List[TaskHandler] = []
        self._dead_letter: List[RecomputeResidualTask] = []
        self._lock = threading.Lock()
        self.published = 0
        self.delivered = 0

    def subscribe(self, handler: TaskHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def publish(self, task: RecomputeResidualTask) -> None:
        """Queue a task, delivering it immediately in synchronous mode."""
        with self._lock:
            self._pending.append(task)
            self.published += 1
        logger.debug(
            "Published recompute task %s for risk %s (%s)",
            task.task_id, task.risk_id, task.reason,
        )
        if self.synchronous:
            self.drain()

    def drain(self) -> int:
        """Deliver every pending task to the subscribed handlers.

        Returns:
            Number of tasks delivered without error.
        """
        delivered = 0
        while True:
            with self._lock:
                if not self._pending:
                    break
                task = self._pending.popleft()
                handlers = list(self._handlers)
            if self._deliver(task, handlers):
                delivered += 1
        return delivered

    @property
    def pending(self) -> List[RecomputeResidualTask]:
        with self._lock:
            return list(self._pending)

    def get_dead_letter_queue(self) -> List[RecomputeResidualTask]:
        with self._lock:
            return list(self._dead_letter)

    def replay_dead_letter(self, task_id: str) -> bool:
        """Re-publish a dead-lettered task.

        Returns:
            True if the task was found and re-published.
        """
        with self._lock:
            for index, task in enumerate(self._dead_letter):
                if task.task_id == task_id:
                    del self._dead_letter[index]
                    break
            else:
                return False
        logger.info("Replaying dead-lettered recompute task %s", task_id)
        self.publish(task)
        return True

    def _deliver(self, task: RecomputeResidualTask, handlers: List[TaskHandler]) -> bool:
        for handler in handlers:
            try:
                handler(task)
            except Exception as e:
                logger.error(
                    "Recompute task %s for risk %s failed: %s",
                    task.task_id, task.risk_id, e, exc_info=True,
                )
                with self._lock:
                    self._dead_letter.append(task)
                return False
        with self._lock:
            self.delivered += 1
        return True


__all__ = ["RecomputeQueue", "TaskHandler"]
