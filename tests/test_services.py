"""
Tests for neuro_teach/services/

Tests queue, worker, and controller components.
"""

import json
import threading

import pytest
import numpy as np

from neuro_teach.core.network import FeedForwardNetwork
from neuro_teach.errors import ConfigurationError
from neuro_teach.evolution.engine import GeneticTeacher
from neuro_teach.evolution.fitness import CallableFitness, DatasetFitness
from neuro_teach.evolution.genome import WeightMap
from neuro_teach.services.queue import (
    TaskStatus,
    EvaluationTask,
    EvaluationResultMessage,
    InMemoryTaskQueue,
    create_task_queue,
)
from neuro_teach.services.controller import (
    ControllerConfig,
    TrainingController,
    load_controller_config,
    run_controller,
)
from neuro_teach.services.worker import EvaluationWorker, WorkerConfig


def make_task(task_id="test-1", genome=None):
    genome = genome or WeightMap.from_topology(FeedForwardNetwork(2, 1).topology)
    return EvaluationTask(task_id=task_id, genome=genome)


def small_config(**overrides):
    params = dict(
        generation_size=6,
        buffered_gen_size=2,
        buffer_count=2,
        generations=2,
        num_workers=2,
        result_timeout=10.0,
        seed=42,
    )
    params.update(overrides)
    return ControllerConfig(**params)


# ==================== Queue Tests ====================

class TestInMemoryTaskQueue:
    """Tests for InMemoryTaskQueue."""

    def test_push_and_pop_task(self):
        """Tasks can be pushed and popped."""
        queue = InMemoryTaskQueue()
        task = make_task()

        queue.push_task(task)
        assert queue.get_queue_length() == 1

        popped = queue.pop_task(timeout=0.1)
        assert popped is task
        assert queue.get_queue_length() == 0

    def test_push_and_pop_result(self):
        """Results can be pushed and popped."""
        queue = InMemoryTaskQueue()
        result = EvaluationResultMessage(task_id="test-1", fitness=0.5)

        queue.push_result(result)
        assert queue.get_result_count() == 1

        popped = queue.pop_result(timeout=0.1)
        assert popped is not None
        assert popped.task_id == result.task_id

    def test_pop_empty_queue_returns_none(self):
        """Popping empty queue returns None."""
        queue = InMemoryTaskQueue()

        assert queue.pop_task(timeout=0.01) is None
        assert queue.pop_result(timeout=0.01) is None

    def test_fifo_ordering(self):
        """Tasks are processed in FIFO order."""
        queue = InMemoryTaskQueue()

        for i in range(3):
            queue.push_task(make_task(f"task-{i}"))

        for i in range(3):
            assert queue.pop_task(timeout=0.1).task_id == f"task-{i}"

    def test_task_status_tracking(self):
        """Task status follows the task through the queue."""
        queue = InMemoryTaskQueue()
        queue.push_task(make_task("ok"))
        queue.push_task(make_task("bad"))
        assert queue.get_task_status("ok") == TaskStatus.PENDING

        queue.pop_task(timeout=0.1)
        assert queue.get_task_status("ok") == TaskStatus.IN_PROGRESS

        queue.push_result(EvaluationResultMessage("ok", 0.5))
        queue.push_result(EvaluationResultMessage("bad", 0.0, error="boom"))
        assert queue.get_task_status("ok") == TaskStatus.COMPLETED
        assert queue.get_task_status("bad") == TaskStatus.FAILED

    def test_wait_until_drained(self):
        """Drain wait returns once every task has a result."""
        queue = InMemoryTaskQueue()
        for i in range(3):
            queue.push_task(make_task(f"task-{i}"))

        assert queue.wait_until_drained(timeout=0.05) is False
        assert queue.get_outstanding() == 3

        def consume():
            for _ in range(3):
                task = queue.pop_task(timeout=1.0)
                queue.push_result(EvaluationResultMessage(task.task_id, 1.0))

        thread = threading.Thread(target=consume)
        thread.start()

        assert queue.wait_until_drained(timeout=5.0) is True
        thread.join()
        assert queue.get_outstanding() == 0

    def test_duplicate_result_does_not_over_drain(self):
        """A second result for a settled task is not counted twice."""
        queue = InMemoryTaskQueue()
        queue.push_task(make_task("a"))
        queue.push_task(make_task("b"))

        queue.push_result(EvaluationResultMessage("a", 1.0))
        queue.push_result(EvaluationResultMessage("a", 1.0))

        assert queue.get_outstanding() == 1

    def test_clear(self):
        """Clear empties all queues and releases drain waits."""
        queue = InMemoryTaskQueue()
        queue.push_task(make_task("t1"))
        queue.push_result(EvaluationResultMessage("r1", 0.5))

        queue.clear()

        assert queue.get_queue_length() == 0
        assert queue.get_result_count() == 0
        assert queue.wait_until_drained(timeout=0.01) is True

    def test_task_to_dict(self):
        data = make_task("t1").to_dict()

        assert data["task_id"] == "t1"
        assert data["genome"]["layer_sizes"] == [2, 1]


class TestCreateTaskQueue:
    """Tests for create_task_queue."""

    def test_memory_backend(self):
        assert isinstance(create_task_queue("memory"), InMemoryTaskQueue)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_task_queue("redis")


# ==================== Worker Tests ====================

class TestEvaluationWorker:
    """Tests for EvaluationWorker."""

    @pytest.fixture
    def teacher(self):
        return GeneticTeacher(4, 2, 1, FeedForwardNetwork(2, 3, 1), seed=42)

    @pytest.fixture
    def worker(self, teacher):
        return EvaluationWorker(
            WorkerConfig(worker_id="w1"),
            InMemoryTaskQueue(),
            teacher,
            DatasetFitness.from_dataset("xor"),
        )

    def test_worker_owns_network(self, worker, teacher):
        """Each worker builds its own network of the engine's topology."""
        assert worker.network.topology == teacher.topology

    def test_evaluate_task_reports_fitness(self, worker, teacher):
        """Worker evaluates a genome and reports its fitness to the engine."""
        genome = teacher.get_genome(0)

        result = worker.evaluate_task(EvaluationTask("t1", genome, genome_index=0))

        assert result.error is None
        assert result.recorded is True
        assert 0.0 < result.fitness <= 1.0
        assert teacher.fitness_snapshot()[0] == pytest.approx(result.fitness)
        assert "mse" in result.metadata

    def test_evaluate_task_handles_error(self, worker):
        """A genome of the wrong shape fails without reporting."""
        bad = WeightMap.from_topology(FeedForwardNetwork(2, 2, 1).topology)

        result = worker.evaluate_task(EvaluationTask("t1", bad))

        assert result.error is not None
        assert result.fitness == 0.0
        assert result.recorded is False

    def test_process_one_with_queue(self, worker, teacher):
        """Worker processes a task from its queue and pushes the result."""
        worker.queue.push_task(EvaluationTask("t1", teacher.get_genome(1), genome_index=1))

        assert worker.process_one() is True
        assert worker.tasks_completed == 1

        result = worker.queue.pop_result(timeout=0.1)
        assert result.task_id == "t1"
        assert result.genome_index == 1
        assert worker.queue.get_task_status("t1") == TaskStatus.COMPLETED

    def test_process_one_empty_queue(self, worker):
        assert worker.process_one() is False

    def test_stops_after_consecutive_errors(self, teacher):
        """A worker gives up after too many failures in a row."""
        def explode(network):
            raise ValueError("bad network")

        worker = EvaluationWorker(
            WorkerConfig(worker_id="w2", max_consecutive_errors=2, poll_interval=0.01),
            InMemoryTaskQueue(),
            teacher,
            CallableFitness(explode),
        )
        for i in range(3):
            worker.queue.push_task(EvaluationTask(f"t{i}", teacher.get_genome(i)))

        worker.run()

        assert worker.tasks_failed == 2
        assert worker.running is False
        assert worker.queue.get_queue_length() == 1

    def test_thread_lifecycle(self, worker, teacher):
        """start() runs the worker on a thread and stop() joins it."""
        worker.config.poll_interval = 0.01
        worker.queue.push_task(EvaluationTask("t1", teacher.get_genome(0)))

        thread = worker.start()
        assert thread.daemon
        assert worker.queue.wait_until_drained(timeout=5.0)

        worker.stop(timeout=5.0)
        assert not thread.is_alive()
        assert worker.tasks_completed == 1

    def test_get_status(self, worker):
        """Worker status is correctly reported."""
        status = worker.get_status()

        assert status["worker_id"] == "w1"
        assert status["running"] is False
        assert status["tasks_completed"] == 0


# ==================== Controller Tests ====================

class TestControllerConfig:
    """Tests for controller configuration."""

    def test_defaults_are_valid(self):
        ControllerConfig().validate()

    @pytest.mark.parametrize("overrides", [
        {"num_workers": 0},
        {"evaluations_per_genome": 0},
        {"generations": -1},
        {"result_timeout": 0},
        {"mutation_rates": {"bogus": 0.1}},
        {"layer_sizes": []},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            ControllerConfig(**overrides).validate()

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "dataset: and\n"
            "layer_sizes: [2, 4, 1]\n"
            "generation_size: 8\n"
            "mutation_rates:\n"
            "  point: 0.5\n"
        )

        config = load_controller_config(str(path))

        assert config.dataset == "and"
        assert config.layer_sizes == [2, 4, 1]
        assert config.generation_size == 8
        assert config.mutation_rates == {"point": 0.5}
        assert config.buffer_count == ControllerConfig().buffer_count

    def test_load_yaml_unknown_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("population: 10\n")

        with pytest.raises(ConfigurationError):
            load_controller_config(str(path))

    def test_load_yaml_not_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigurationError):
            load_controller_config(str(path))

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_controller_config(str(path)) == ControllerConfig()


class TestTrainingController:
    """Tests for TrainingController."""

    def test_layers_must_fit_dataset(self):
        with pytest.raises(ConfigurationError):
            TrainingController(small_config(layer_sizes=[3, 2, 1]))

    def test_generate_tasks(self):
        """One task per genome per evaluation."""
        controller = TrainingController(small_config(evaluations_per_genome=3))
        generation, genomes = controller.teacher.current_genomes()

        assert controller.generate_tasks(generation, genomes) == 18
        assert controller.queue.get_queue_length() == 18

    def test_step(self):
        """A step evaluates every genome and advances the generation."""
        controller = TrainingController(small_config(evaluations_per_genome=2))
        try:
            stats = controller.step()
        finally:
            controller.close()

        assert stats["generation"] == 0
        assert stats["next_generation"] == 1
        assert stats["tasks_created"] == 12
        assert stats["results_received"] == 12
        assert stats["tasks_failed"] == 0
        assert stats["reports_recorded"] == 12
        assert stats["reported_genomes"] == 6
        assert stats["total_reports"] == 12
        assert 0.0 < stats["best_fitness"] <= 1.0
        assert controller.teacher.generation_count() == 1
        assert controller.total_evaluations == 12
        assert len(controller.history) == 1

    def test_stale_results_are_dropped(self):
        """Late results from an earlier generation do not count toward the next step."""
        controller = TrainingController(small_config())
        _, genomes = controller.teacher.current_genomes()
        controller.queue.push_result(EvaluationResultMessage(
            task_id="late-task",
            fitness=0.9,
            generation=-1,
            genome_index=0,
            recorded=True,
        ))
        try:
            stats = controller.step()
        finally:
            controller.close()

        assert stats["tasks_created"] == 6
        assert stats["results_received"] == 6
        assert stats["reports_recorded"] == 6
        assert controller.total_evaluations == 6

    def test_collect_results_filters_by_generation(self):
        controller = TrainingController(small_config())
        for generation in (0, 3):
            controller.queue.push_result(EvaluationResultMessage(
                task_id=f"task-{generation}",
                fitness=0.5,
                generation=generation,
            ))

        results = controller.collect_results(generation=3, timeout=1.0)

        assert [r.task_id for r in results] == ["task-3"]
        assert controller.queue.get_result_count() == 0

    def test_run(self):
        """Run drives the configured number of generations and stops workers."""
        controller = TrainingController(small_config(generations=3))
        try:
            final = controller.run()
        finally:
            controller.close()

        assert final["total_generations"] == 3
        assert final["total_evaluations"] == 18
        assert final["best_genome"]["layer_sizes"] == [2, 3, 1]
        assert controller.running is False
        assert all(not w.running for w in controller.workers)

    def test_history_records_every_generation(self):
        """Each generation leaves a statistics entry with a finite best score."""
        controller = TrainingController(small_config(generation_size=12, generations=5))
        try:
            controller.run()
        finally:
            controller.close()

        best = [s["best_fitness"] for s in controller.history]
        assert len(best) == 5
        assert all(np.isfinite(best))
        assert [s["generation"] for s in controller.history] == [0, 1, 2, 3, 4]

    def test_checkpoint(self, tmp_path):
        path = tmp_path / "checkpoint.json"
        controller = TrainingController(small_config(generations=1))
        try:
            controller.run()
            controller.save_checkpoint(str(path))
        finally:
            controller.close()

        checkpoint = json.loads(path.read_text())
        assert checkpoint["generation"] == 1
        assert len(checkpoint["history"]) == 1
        assert checkpoint["best_genome"]["type"] == "WeightMap"
        assert checkpoint["config"]["dataset"] == "xor"

    def test_get_status(self):
        controller = TrainingController(small_config())

        status = controller.get_status()

        assert status["running"] is False
        assert status["generation"] == 0
        assert len(status["workers"]) == 2
        assert status["engine"]["generation_size"] == 6


# ==================== CLI Tests ====================

class TestRunController:
    """Tests for the command-line entry point."""

    def test_cli_run(self, capsys):
        run_controller([
            "--dataset", "or",
            "--layers", "2,2,1",
            "--generation-size", "4",
            "--buffered-size", "2",
            "--buffer-count", "1",
            "--generations", "2",
            "--workers", "1",
            "--seed", "3",
            "--log-level", "WARNING",
        ])

        summary = json.loads(capsys.readouterr().out)
        assert summary["total_generations"] == 2
        assert summary["total_evaluations"] == 8
        assert "best_genome" not in summary

    def test_cli_config_file_with_override(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("generation_size: 4\nbuffered_gen_size: 1\ngenerations: 5\nnum_workers: 1\n")

        run_controller(["--config", str(path), "--generations", "1", "--log-level", "WARNING"])

        summary = json.loads(capsys.readouterr().out)
        assert summary["total_generations"] == 1
        assert summary["total_evaluations"] == 4

    def test_cli_env_defaults(self, monkeypatch, capsys):
        monkeypatch.setenv("NEURO_TEACH_GENERATIONS", "1")
        monkeypatch.setenv("NEURO_TEACH_GENERATION_SIZE", "2")
        monkeypatch.setenv("NEURO_TEACH_BUFFERED_SIZE", "1")
        monkeypatch.setenv("NEURO_TEACH_WORKERS", "1")

        run_controller(["--log-level", "WARNING"])

        summary = json.loads(capsys.readouterr().out)
        assert summary["total_generations"] == 1
        assert summary["total_evaluations"] == 2
