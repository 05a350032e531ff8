"""
neuro_teach/services/queue.py

In-process task queue for parallel genome evaluation.

The queue provides:
- Task distribution to worker threads
- Result collection from workers
- Task status tracking
- Drain waits, so the controller knows when a generation is fully evaluated

Tasks carry the genome object itself. The engine matches fitness reports by
identity, so genomes are never serialized on the way to a worker.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional
import queue
import threading
import time
import logging

from neuro_teach.evolution.genome import WeightMap

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    """Status of an evaluation task."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class EvaluationTask:
    """
    A single evaluation task for a worker.

    Identifies one genome of one generation. Several tasks may point at the
    same genome when it is evaluated more than once.
    """
    task_id: str
    genome: WeightMap
    generation: int = 0
    genome_index: int = 0
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "genome": self.genome.to_dict(),
            "generation": self.generation,
            "genome_index": self.genome_index,
            "created_at": self.created_at,
        }


@dataclass
class EvaluationResultMessage:
    """
    Result of evaluating a genome.

    Sent from worker back to controller after the fitness has been reported
    to the engine.
    """
    task_id: str
    fitness: float
    generation: int = 0
    genome_index: int = 0
    recorded: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    worker_id: str = ""
    completed_at: float = field(default_factory=time.time)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "fitness": self.fitness,
            "generation": self.generation,
            "genome_index": self.genome_index,
            "recorded": self.recorded,
            "metadata": self.metadata,
            "worker_id": self.worker_id,
            "completed_at": self.completed_at,
            "error": self.error,
        }


class TaskQueue(ABC):
    """
    Abstract base for task queue implementations.

    Provides interface for task distribution between controller and workers.
    """

    @abstractmethod
    def push_task(self, task: EvaluationTask) -> bool:
        """Push a task to the queue. Returns True if successful."""
        pass

    @abstractmethod
    def pop_task(self, timeout: float = 1.0) -> Optional[EvaluationTask]:
        """Pop a task from the queue. Returns None if queue is empty."""
        pass

    @abstractmethod
    def push_result(self, result: EvaluationResultMessage) -> bool:
        """Push a result to the result queue. Returns True if successful."""
        pass

    @abstractmethod
    def pop_result(self, timeout: float = 1.0) -> Optional[EvaluationResultMessage]:
        """Pop a result from the result queue. Returns None if empty."""
        pass

    @abstractmethod
    def wait_until_drained(self, timeout: Optional[float] = None) -> bool:
        """Block until every pushed task has a result. False on timeout."""
        pass

    @abstractmethod
    def get_queue_length(self) -> int:
        """Get number of pending tasks."""
        pass

    @abstractmethod
    def get_result_count(self) -> int:
        """Get number of pending results."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all queues."""
        pass


class InMemoryTaskQueue(TaskQueue):
    """
    In-memory task queue for single-process evaluation.

    Thread-safe implementation using queues.
    """

    def __init__(self):
        self._task_queue: queue.Queue = queue.Queue()
        self._result_queue: queue.Queue = queue.Queue()
        self._status: Dict[str, TaskStatus] = {}
        self._lock = threading.Lock()
        self._drained = threading.Condition(self._lock)
        self._outstanding = 0

    def push_task(self, task: EvaluationTask) -> bool:
        """Push task to in-memory queue."""
        with self._lock:
            self._status[task.task_id] = TaskStatus.PENDING
            self._outstanding += 1
        self._task_queue.put(task)
        return True

    def pop_task(self, timeout: float = 1.0) -> Optional[EvaluationTask]:
        """Pop task from in-memory queue."""
        try:
            task = self._task_queue.get(timeout=timeout)
        except queue.Empty:
            return None
        with self._lock:
            self._status[task.task_id] = TaskStatus.IN_PROGRESS
        return task

    def push_result(self, result: EvaluationResultMessage) -> bool:
        """Push result to in-memory queue and settle its task."""
        self._result_queue.put(result)
        with self._drained:
            status = TaskStatus.COMPLETED if result.error is None else TaskStatus.FAILED
            previous = self._status.get(result.task_id)
            self._status[result.task_id] = status
            if previous in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS):
                self._outstanding -= 1
            if self._outstanding <= 0:
                self._drained.notify_all()
        return True

    def pop_result(self, timeout: float = 1.0) -> Optional[EvaluationResultMessage]:
        """Pop result from in-memory queue."""
        try:
            return self._result_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def wait_until_drained(self, timeout: Optional[float] = None) -> bool:
        """Wait until no task is pending or in progress."""
        with self._drained:
            return self._drained.wait_for(lambda: self._outstanding <= 0, timeout=timeout)

    def get_queue_length(self) -> int:
        """Get number of pending tasks."""
        return self._task_queue.qsize()

    def get_result_count(self) -> int:
        """Get number of pending results."""
        return self._result_queue.qsize()

    def get_outstanding(self) -> int:
        """Tasks pushed but not yet settled by a result."""
        with self._lock:
            return self._outstanding

    def clear(self) -> None:
        """Clear all queues."""
        while True:
            try:
                self._task_queue.get_nowait()
            except queue.Empty:
                break
        while True:
            try:
                self._result_queue.get_nowait()
            except queue.Empty:
                break
        with self._drained:
            self._status.clear()
            self._outstanding = 0
            self._drained.notify_all()
        logger.info("Cleared all queues")

    def get_task_status(self, task_id: str) -> TaskStatus:
        """Get status of a specific task."""
        with self._lock:
            return self._status.get(task_id, TaskStatus.PENDING)


def create_task_queue(backend: str = "memory") -> TaskQueue:
    """
    Factory function to create a task queue.

    Args:
        backend: Only "memory" is available

    Returns:
        TaskQueue instance
    """
    if backend == "memory":
        return InMemoryTaskQueue()
    else:
        raise ValueError(f"Unknown backend: {backend}")
