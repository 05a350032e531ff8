"""
neuro_teach/services/

In-process services for parallel genome evaluation.

Architecture:
- Controller: owns the engine, queues a generation's genomes, triggers cycles
- Worker: evaluates genomes on its own network thread and reports fitness
- Queue: thread-safe task and result distribution

Evaluation is the slow, parallel step; everything else is cheap.
"""

from .queue import (
    EvaluationResultMessage,
    EvaluationTask,
    InMemoryTaskQueue,
    TaskQueue,
    TaskStatus,
    create_task_queue,
)
from .worker import EvaluationWorker, WorkerConfig
from .controller import (
    ControllerConfig,
    TrainingController,
    load_controller_config,
    run_controller,
)

__all__ = [
    "EvaluationResultMessage",
    "EvaluationTask",
    "InMemoryTaskQueue",
    "TaskQueue",
    "TaskStatus",
    "create_task_queue",
    "EvaluationWorker",
    "WorkerConfig",
    "ControllerConfig",
    "TrainingController",
    "load_controller_config",
    "run_controller",
]
