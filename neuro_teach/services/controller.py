"""
neuro_teach/services/controller.py

Training controller service.

The controller drives evolution end to end:
1. Hands out the current generation's genomes as tasks
2. Lets the worker threads evaluate them and report fitness
3. Waits for the queue to drain
4. Triggers one evolution cycle on the engine
5. Tracks progress and statistics

Configuration comes from ControllerConfig, a YAML file, or the command line.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from neuro_teach.core.activations import get_activation
from neuro_teach.core.network import FeedForwardNetwork, Topology
from neuro_teach.errors import ConfigurationError
from neuro_teach.evolution.engine import GenerationObserver, GeneticTeacher
from neuro_teach.evolution.fitness import DatasetFitness, FitnessFunction
from neuro_teach.evolution.genome import WeightMap
from neuro_teach.evolution.operators import MutationRates

from .queue import EvaluationResultMessage, EvaluationTask, create_task_queue
from .worker import EvaluationWorker, WorkerConfig

logger = logging.getLogger(__name__)


@dataclass
class ControllerConfig:
    """Configuration for the training controller."""
    # Problem
    dataset: str = "xor"
    metric: str = "inverse_mse"  # "inverse_mse" or "accuracy"
    layer_sizes: List[int] = field(default_factory=lambda: [2, 3, 1])
    activation: str = "sigmoid"

    # Evolution parameters
    generation_size: int = 50
    buffered_gen_size: int = 10
    buffer_count: int = 5
    generations: int = 100
    mutation_rates: Dict[str, float] = field(default_factory=dict)

    # Evaluation
    num_workers: int = 4
    evaluations_per_genome: int = 1
    result_timeout: float = 60.0  # Seconds to wait for a generation's results

    # Checkpointing
    checkpoint_interval: int = 10  # Generations between checkpoints
    checkpoint_path: Optional[str] = None

    # Random seed
    seed: Optional[int] = 42

    def validate(self) -> None:
        if self.num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.evaluations_per_genome < 1:
            raise ConfigurationError(
                f"evaluations_per_genome must be >= 1, got {self.evaluations_per_genome}"
            )
        if self.generations < 0:
            raise ConfigurationError(f"generations must be >= 0, got {self.generations}")
        if self.result_timeout <= 0:
            raise ConfigurationError(f"result_timeout must be > 0, got {self.result_timeout}")
        unknown = set(self.mutation_rates) - set(MutationRates().as_dict())
        if unknown:
            raise ConfigurationError(f"Unknown mutation rates: {', '.join(sorted(unknown))}")
        Topology.from_layer_sizes(*self.layer_sizes)


def load_controller_config(path: str) -> ControllerConfig:
    """
    Load a ControllerConfig from a YAML file.

    The file holds a flat mapping of ControllerConfig fields. Unknown keys
    raise ConfigurationError.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    known = {f.name for f in dataclasses.fields(ControllerConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown config keys in {path}: {', '.join(sorted(unknown))}"
        )

    logger.info(f"Loaded controller config from {path}")
    return ControllerConfig(**data)


class TrainingController:
    """
    Controller for multi-threaded genetic training.

    Manages the evaluate-evolve loop across worker threads.
    """

    def __init__(
        self,
        config: ControllerConfig,
        fitness_fn: Optional[FitnessFunction] = None,
        observer: Optional[GenerationObserver] = None,
    ):
        config.validate()
        self.config = config

        self.fitness_fn = fitness_fn or DatasetFitness.from_dataset(
            config.dataset, metric=config.metric
        )
        if isinstance(self.fitness_fn, DatasetFitness):
            inputs = self.fitness_fn.inputs.shape[1]
            outputs = self.fitness_fn.targets.shape[1]
            if (inputs, outputs) != (config.layer_sizes[0], config.layer_sizes[-1]):
                raise ConfigurationError(
                    f"Layers {config.layer_sizes} do not fit dataset "
                    f"'{config.dataset}' ({inputs} inputs, {outputs} outputs)"
                )

        template = FeedForwardNetwork(
            *config.layer_sizes,
            activation=get_activation(config.activation),
        )
        self.teacher = GeneticTeacher(
            config.generation_size,
            config.buffered_gen_size,
            config.buffer_count,
            template,
            observer=observer,
            mutation_rates=MutationRates(**config.mutation_rates),
            seed=config.seed,
        )

        self.queue = create_task_queue("memory")
        self.workers = [
            EvaluationWorker(
                WorkerConfig(worker_id=f"worker-{i}", activation=config.activation),
                self.queue,
                self.teacher,
                self.fitness_fn,
            )
            for i in range(config.num_workers)
        ]

        # State tracking
        self.total_evaluations = 0
        self.history: List[Dict[str, Any]] = []

        # Status
        self.running = False
        self.start_time: Optional[float] = None

        logger.info(
            f"Controller initialized: dataset {config.dataset}, "
            f"topology {self.teacher.topology}, {config.num_workers} workers"
        )

    # ==================== Workers ====================

    def start_workers(self) -> None:
        for worker in self.workers:
            if not worker.running:
                worker.start()

    def stop_workers(self) -> None:
        for worker in self.workers:
            worker.stop(timeout=max(1.0, worker.config.poll_interval * 10))

    # ==================== Generation loop ====================

    def generate_tasks(self, generation: int, genomes: List[WeightMap]) -> int:
        """
        Queue evaluation tasks for one generation.

        Returns number of tasks generated.
        """
        tasks_created = 0
        for _ in range(self.config.evaluations_per_genome):
            for index, genome in enumerate(genomes):
                task = EvaluationTask(
                    task_id=str(uuid.uuid4()),
                    genome=genome,
                    generation=generation,
                    genome_index=index,
                )
                if self.queue.push_task(task):
                    tasks_created += 1

        logger.info(f"Generation {generation}: Created {tasks_created} tasks")
        return tasks_created

    def collect_results(
        self,
        generation: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[EvaluationResultMessage]:
        """
        Wait for the workers to finish the queued tasks and gather results.

        On timeout the remaining tasks are discarded. When a generation is
        given, late results from an earlier generation's tasks are dropped.
        """
        timeout = timeout or self.config.result_timeout

        if not self.queue.wait_until_drained(timeout=timeout):
            logger.warning(
                f"Timeout waiting for results: {self.queue.get_queue_length()} tasks left"
            )
            self.queue.clear()

        results = []
        while True:
            result = self.queue.pop_result(timeout=0.0)
            if result is None:
                break
            if generation is not None and result.generation != generation:
                logger.debug(
                    f"Dropping stale result {result.task_id} from generation {result.generation}"
                )
                continue
            if result.error is not None:
                logger.warning(f"Task {result.task_id} failed: {result.error}")
            results.append(result)

        return results

    def step(self) -> Dict[str, Any]:
        """
        Evaluate the current generation and evolve it once.

        Returns generation statistics.
        """
        self.start_workers()
        gen_start = time.time()

        generation, genomes = self.teacher.current_genomes()
        num_tasks = self.generate_tasks(generation, genomes)
        results = self.collect_results(generation)

        succeeded = [r for r in results if r.error is None]
        self.total_evaluations += len(succeeded)

        next_generation = self.teacher.begin_evolution_cycle()
        cycle = self.teacher.get_statistics()["last_cycle"]

        stats = {
            **cycle,
            "generation": generation,
            "next_generation": next_generation,
            "tasks_created": num_tasks,
            "results_received": len(results),
            "tasks_failed": len(results) - len(succeeded),
            "reports_recorded": sum(1 for r in succeeded if r.recorded),
            "total_evaluations": self.total_evaluations,
            "generation_time": time.time() - gen_start,
        }
        self.history.append(stats)

        best_fit = stats.get("best_fitness")
        best_fit_str = f"{best_fit:.4f}" if isinstance(best_fit, (int, float)) else "N/A"
        logger.info(
            f"Generation {generation}: "
            f"{len(succeeded)}/{num_tasks} results, "
            f"best fitness: {best_fit_str}"
        )

        return stats

    def run(self, generations: Optional[int] = None) -> Dict[str, Any]:
        """
        Run evolution for specified number of generations.

        Args:
            generations: Number of generations (default: from config)

        Returns:
            Final statistics
        """
        generations = self.config.generations if generations is None else generations
        self.running = True
        self.start_time = time.time()

        logger.info(f"Starting evolution for {generations} generations")

        try:
            for _ in range(generations):
                if not self.running:
                    break

                self.step()

                if (
                    self.config.checkpoint_path and
                    self.teacher.generation_count() % self.config.checkpoint_interval == 0
                ):
                    self.save_checkpoint()

        except KeyboardInterrupt:
            logger.info("Evolution interrupted by user")

        finally:
            self.running = False
            self.stop_workers()

        total_time = time.time() - self.start_time
        best_genome, best_fitness = self.teacher.get_best()

        final_stats = {
            "total_generations": self.teacher.generation_count(),
            "total_evaluations": self.total_evaluations,
            "total_time": total_time,
            "best_fitness": best_fitness,
            "best_genome": best_genome.to_dict() if best_genome else None,
        }

        best_fit_str = f"{best_fitness:.4f}" if best_fitness is not None else "N/A"
        logger.info(
            f"Evolution complete: {final_stats['total_generations']} generations, "
            f"best fitness: {best_fit_str}"
        )

        return final_stats

    def stop(self) -> None:
        """Stop evolution gracefully."""
        self.running = False
        logger.info("Stopping evolution...")

    def close(self) -> None:
        """Stop workers and the engine's async worker."""
        self.stop_workers()
        self.teacher.shutdown()

    def save_checkpoint(self, path: Optional[str] = None) -> None:
        """Save progress and the best genome to a JSON checkpoint file."""
        path = path or self.config.checkpoint_path
        if path is None:
            return

        checkpoint = {
            "generation": self.teacher.generation_count(),
            "total_evaluations": self.total_evaluations,
            "history": self.history,
            "config": dataclasses.asdict(self.config),
        }

        best_genome, best_fitness = self.teacher.get_best()
        if best_genome:
            checkpoint["best_genome"] = best_genome.to_dict()
            checkpoint["best_fitness"] = best_fitness

        with open(path, "w") as f:
            json.dump(checkpoint, f, indent=2)

        logger.info(f"Checkpoint saved to {path}")

    def get_status(self) -> Dict[str, Any]:
        """Get current controller status."""
        elapsed = 0.0
        if self.start_time:
            elapsed = time.time() - self.start_time

        return {
            "running": self.running,
            "generation": self.teacher.generation_count(),
            "total_evaluations": self.total_evaluations,
            "queue_length": self.queue.get_queue_length(),
            "result_count": self.queue.get_result_count(),
            "elapsed_time": elapsed,
            "workers": [w.get_status() for w in self.workers],
            "engine": self.teacher.get_statistics(),
        }


def _parse_layers(value: str) -> List[int]:
    return [int(part) for part in value.split(",") if part.strip()]


def run_controller(argv: Optional[List[str]] = None) -> None:
    """
    Run the controller from the command line.

    This is the entry point for the neuro-teach console script. Flags fall
    back to NEURO_TEACH_* environment variables, then to the --config file,
    then to ControllerConfig defaults.
    """
    import argparse
    import signal
    import sys

    env = os.environ.get
    parser = argparse.ArgumentParser(description="Genetic weight training")
    parser.add_argument("--config", default=env("NEURO_TEACH_CONFIG"))
    parser.add_argument("--dataset", default=env("NEURO_TEACH_DATASET"))
    parser.add_argument("--layers", type=_parse_layers, default=env("NEURO_TEACH_LAYERS"))
    parser.add_argument("--generation-size", type=int, default=env("NEURO_TEACH_GENERATION_SIZE"))
    parser.add_argument("--buffered-size", type=int, default=env("NEURO_TEACH_BUFFERED_SIZE"))
    parser.add_argument("--buffer-count", type=int, default=env("NEURO_TEACH_BUFFER_COUNT"))
    parser.add_argument("--generations", type=int, default=env("NEURO_TEACH_GENERATIONS"))
    parser.add_argument("--workers", type=int, default=env("NEURO_TEACH_WORKERS"))
    parser.add_argument(
        "--evaluations-per-genome", type=int, default=env("NEURO_TEACH_EVALUATIONS_PER_GENOME")
    )
    parser.add_argument("--seed", type=int, default=env("NEURO_TEACH_SEED"))
    parser.add_argument("--log-level", default=env("NEURO_TEACH_LOG_LEVEL", "INFO"))

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_controller_config(args.config) if args.config else ControllerConfig()

    overrides = {
        "dataset": args.dataset,
        "layer_sizes": args.layers,
        "generation_size": args.generation_size,
        "buffered_gen_size": args.buffered_size,
        "buffer_count": args.buffer_count,
        "generations": args.generations,
        "num_workers": args.workers,
        "evaluations_per_genome": args.evaluations_per_genome,
        "seed": args.seed,
    }
    config = dataclasses.replace(
        config, **{k: v for k, v in overrides.items() if v is not None}
    )

    controller = TrainingController(config)

    # Handle signals for graceful shutdown
    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        controller.stop()
        controller.close()
        sys.exit(0)

    previous_handlers = {
        sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        final_stats = controller.run()
    finally:
        controller.close()
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    print(json.dumps({k: v for k, v in final_stats.items() if k != "best_genome"}, indent=2))


if __name__ == "__main__":
    run_controller()
