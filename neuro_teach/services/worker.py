"""
neuro_teach/services/worker.py

Evaluation worker service.

Workers perform the expensive part of evolution:
1. Pull evaluation tasks from the queue
2. Load the task's genome into a private network
3. Score the network with the fitness function
4. Report the score to the engine and push a result back to the queue

Each worker owns its network, so any number of workers can evaluate
concurrently. Run them as daemon threads with start().
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from neuro_teach.core.activations import get_activation
from neuro_teach.core.network import FeedForwardNetwork
from neuro_teach.evolution.engine import GeneticTeacher
from neuro_teach.evolution.fitness import FitnessFunction

from .queue import EvaluationResultMessage, EvaluationTask, TaskQueue

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Configuration for evaluation workers."""
    # Worker identity
    worker_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    # Network built for this worker
    activation: str = "sigmoid"

    # Worker behavior
    poll_interval: float = 0.1  # Seconds to block waiting for a task
    max_consecutive_errors: int = 5  # Errors before worker stops
    heartbeat_interval: float = 30.0  # Seconds between heartbeat logs


class EvaluationWorker:
    """
    Worker that evaluates genomes from the task queue.

    Runs continuously, pulling tasks, reporting fitness and pushing results.
    """

    def __init__(
        self,
        config: WorkerConfig,
        task_queue: TaskQueue,
        teacher: GeneticTeacher,
        fitness_fn: FitnessFunction,
    ):
        self.config = config
        self.worker_id = config.worker_id
        self.queue = task_queue
        self.teacher = teacher
        self.fitness_fn = fitness_fn

        # Private network shaped like the engine's genomes
        self.network = FeedForwardNetwork(
            *teacher.topology.layer_sizes,
            activation=get_activation(config.activation),
        )

        # Status
        self.running = False
        self.tasks_completed = 0
        self.tasks_failed = 0
        self.consecutive_errors = 0
        self.last_heartbeat = time.time()

        self._thread: Optional[threading.Thread] = None

        logger.info(f"Worker {self.worker_id} initialized")

    def evaluate_task(self, task: EvaluationTask) -> EvaluationResultMessage:
        """
        Evaluate a single task and report its fitness to the engine.

        Args:
            task: Evaluation task from queue

        Returns:
            Result message to push to result queue
        """
        start_time = time.time()

        try:
            task.genome.apply_to(self.network)
            result = self.fitness_fn.evaluate(self.network)
            recorded = self.teacher.report_fitness(result.fitness, task.genome)

            eval_time = time.time() - start_time

            return EvaluationResultMessage(
                task_id=task.task_id,
                fitness=result.fitness,
                generation=task.generation,
                genome_index=task.genome_index,
                recorded=recorded,
                metadata={
                    **result.metadata,
                    "eval_time": eval_time,
                },
                worker_id=self.worker_id,
            )

        except Exception as e:
            logger.error(f"Task {task.task_id} failed: {e}")
            return EvaluationResultMessage(
                task_id=task.task_id,
                fitness=0.0,
                generation=task.generation,
                genome_index=task.genome_index,
                metadata={"error": str(e)},
                worker_id=self.worker_id,
                error=str(e),
            )

    def process_one(self) -> bool:
        """
        Process a single task if available.

        Returns True if a task was processed, False if queue was empty.
        """
        task = self.queue.pop_task(timeout=self.config.poll_interval)
        if task is None:
            return False

        logger.debug(f"Worker {self.worker_id} processing task {task.task_id}")

        result = self.evaluate_task(task)

        if result.error is None:
            self.tasks_completed += 1
            self.consecutive_errors = 0
        else:
            self.tasks_failed += 1
            self.consecutive_errors += 1

        self.queue.push_result(result)
        return True

    def run(self) -> None:
        """
        Run worker continuously until stopped.

        Polls for tasks and processes them.
        """
        self.running = True
        logger.info(f"Worker {self.worker_id} starting")

        try:
            while self.running:
                # Check for too many consecutive errors
                if self.consecutive_errors >= self.config.max_consecutive_errors:
                    logger.error(
                        f"Worker {self.worker_id}: too many consecutive errors "
                        f"({self.consecutive_errors}), stopping"
                    )
                    break

                self.process_one()

                now = time.time()
                if now - self.last_heartbeat >= self.config.heartbeat_interval:
                    logger.info(
                        f"Worker {self.worker_id} heartbeat: "
                        f"{self.tasks_completed} completed, {self.tasks_failed} failed"
                    )
                    self.last_heartbeat = now

        finally:
            self.running = False
            logger.info(
                f"Worker {self.worker_id} stopped: "
                f"{self.tasks_completed} completed, {self.tasks_failed} failed"
            )

    def start(self) -> threading.Thread:
        """Run the worker on a daemon thread."""
        self.running = True
        self._thread = threading.Thread(
            target=self.run,
            name=f"worker-{self.worker_id}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop worker gracefully, joining its thread if it has one."""
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def get_status(self) -> dict[str, Any]:
        """Get current worker status."""
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "consecutive_errors": self.consecutive_errors,
        }
