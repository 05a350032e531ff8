"""
neuro_teach/evolution/engine.py

The genetic teacher: owns the current generation and evolves it.

Lifecycle of one generation:
1. Evaluators pull genomes and report fitness (concurrently, any thread)
2. An evolution cycle is requested (sync, or async on the engine's worker)
3. Under the state lock: rank the generation, which closes it to reports
4. Outside the lock: breed the top half, mutate copies of the rest
5. Under the state lock: swap in the new generation, retire the old one
6. Notify the observer

Lock discipline:
- _lock guards the current generation's accumulators, the generation
  pointer and the history buffer. It is only held for scans and swaps.
- _cycle_lock serializes evolution cycles. It is always taken before
  _lock, never after.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter, deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import numpy as np

from neuro_teach.core.network import FeedForwardNetwork, Topology
from neuro_teach.errors import ConfigurationError
from .generation import Generation
from .genome import WeightMap
from .operators import (
    MutationRates,
    breed,
    breeding_pairs,
    mutate,
    random_variation,
    rank_generation,
)

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Configuration for the genetic teacher."""
    generation_size: int = 50        # Genomes per generation
    buffered_gen_size: int = 10      # Top genomes kept from each retired generation
    buffer_count: int = 5            # Retired generations kept
    seed: Optional[int] = None
    mutation_rates: MutationRates = field(default_factory=MutationRates)

    def validate(self) -> None:
        """Raise ConfigurationError describing the first invalid field."""
        if not isinstance(self.generation_size, int) or self.generation_size <= 0:
            raise ConfigurationError(
                f"generation_size must be a positive integer, got {self.generation_size!r}"
            )
        if not isinstance(self.buffered_gen_size, int) or self.buffered_gen_size < 0:
            raise ConfigurationError(
                f"buffered_gen_size must be a non-negative integer, got {self.buffered_gen_size!r}"
            )
        if self.buffered_gen_size > self.generation_size:
            raise ConfigurationError(
                f"buffered_gen_size ({self.buffered_gen_size}) cannot exceed "
                f"generation_size ({self.generation_size})"
            )
        if not isinstance(self.buffer_count, int) or self.buffer_count < 0:
            raise ConfigurationError(
                f"buffer_count must be a non-negative integer, got {self.buffer_count!r}"
            )
        if not isinstance(self.mutation_rates, MutationRates):
            raise ConfigurationError("mutation_rates must be a MutationRates instance")


class EngineState(Enum):
    """Whether the engine is collecting reports or replacing a generation."""
    OPEN = "open"
    EVOLVING = "evolving"


class GenerationObserver(ABC):
    """Receives one notification per completed evolution cycle."""

    @abstractmethod
    def on_generation_ready(self, generation: int) -> None:
        """
        Called once the new generation is installed and visible.

        Runs on the thread that performed the cycle. Observers that want to
        trigger another cycle must use begin_evolution_cycle_async.
        """
        pass


def resolve_template(template: Any) -> Tuple[Topology, WeightMap]:
    """
    Turn a template into (topology, seed genome).

    Accepts a FeedForwardNetwork (its weights seed generation 0), a
    WeightMap, a Topology, or any object exposing a `topology` attribute.
    """
    if template is None:
        raise ConfigurationError("template cannot be None")
    if isinstance(template, FeedForwardNetwork):
        return template.topology, WeightMap.from_network(template)
    if isinstance(template, WeightMap):
        return template.topology, template.copy()
    if isinstance(template, Topology):
        return template, WeightMap.from_topology(template)

    topology = getattr(template, "topology", None)
    if isinstance(topology, Topology):
        return topology, WeightMap.from_topology(topology)

    raise ConfigurationError(
        f"template must be a network, WeightMap or Topology, got {type(template).__name__}"
    )


class GeneticTeacher:
    """
    Evolves the weights of a feed-forward network.

    Thread-safe: report_fitness and the read accessors may be called from
    any number of evaluator threads while cycles run.

    Example:
        teacher = GeneticTeacher(20, 5, 3, FeedForwardNetwork(2, 3, 1))
        genome = teacher.get_genome(0)
        teacher.report_fitness(0.7, genome)
        teacher.begin_evolution_cycle()
    """

    def __init__(
        self,
        generation_size: int,
        buffered_gen_size: int,
        buffer_count: int,
        template: Any,
        observer: Optional[GenerationObserver] = None,
        mutation_rates: Optional[MutationRates] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        config = EngineConfig(
            generation_size=generation_size,
            buffered_gen_size=buffered_gen_size,
            buffer_count=buffer_count,
            seed=seed,
            mutation_rates=mutation_rates or MutationRates(),
        )
        config.validate()
        topology, seed_genome = resolve_template(template)

        self.config = config
        self.observer = observer
        self.rng = rng or np.random.default_rng(config.seed)

        self._topology = topology
        self._seed_genome = seed_genome

        self._lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._state = EngineState.OPEN
        self._generation_number = 0
        self._history: Deque[Generation] = deque(maxlen=config.buffer_count)
        self._current = Generation(
            random_variation(seed_genome, config.generation_size, self.rng)
        )

        self._best: Tuple[Optional[WeightMap], Optional[float]] = (None, None)
        self._last_cycle: Dict[str, Any] = {}

        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False

        logger.info(
            f"GeneticTeacher initialized: topology {topology}, "
            f"{config.generation_size} genomes per generation, "
            f"buffering {config.buffer_count} x {config.buffered_gen_size}"
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        template: Any,
        observer: Optional[GenerationObserver] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> "GeneticTeacher":
        if config is None:
            raise ConfigurationError("config cannot be None")
        return cls(
            config.generation_size,
            config.buffered_gen_size,
            config.buffer_count,
            template,
            observer=observer,
            mutation_rates=config.mutation_rates,
            seed=config.seed,
            rng=rng,
        )

    # ==================== Fitness reporting ====================

    def report_fitness(self, score: float, genome: WeightMap) -> bool:
        """
        Record a fitness score for a genome of the current generation.

        Never raises for unknown or retired genomes; the report is dropped.
        Returns True if the report was recorded.
        """
        with self._lock:
            recorded = self._current.record_fitness(score, genome)
            generation = self._generation_number

        if not recorded:
            logger.debug(f"Dropped fitness report for {genome!r} (generation {generation})")
        return recorded

    # ==================== Evolution ====================

    def begin_evolution_cycle(self) -> int:
        """
        Replace the current generation with its offspring.

        Cycles never overlap: a call made while another cycle runs waits
        for it to finish. Returns the new generation number.
        """
        with self._cycle_lock:
            start_time = time.time()

            with self._lock:
                generation = self._current
                ranking = rank_generation(generation)
                averages = generation.averages()
                self._state = EngineState.EVOLVING

            try:
                next_generation, styles = self._build_next_generation(generation, ranking)
            except Exception:
                with self._lock:
                    generation.reset_selection()
                    self._state = EngineState.OPEN
                logger.exception("Evolution cycle failed; current generation kept")
                raise

            retired = generation.trimmed(ranking[:self.config.buffered_gen_size])
            stats = self._cycle_statistics(generation, ranking, averages, styles)

            with self._lock:
                self._current = next_generation
                self._history.append(retired)
                self._generation_number += 1
                number = self._generation_number
                self._best = (generation.genomes[ranking[0]], averages[ranking[0]])
                stats["generation"] = number
                stats["cycle_time"] = time.time() - start_time
                self._last_cycle = stats

            best = stats["best_fitness"]
            best_str = f"{best:.4f}" if best is not None else "N/A"
            logger.info(
                f"Generation {number} ready: best fitness {best_str}, "
                f"{stats['reported_genomes']}/{generation.size} genomes reported, "
                f"{stats['cycle_time']:.3f}s"
            )

            try:
                if self.observer is not None:
                    self.observer.on_generation_ready(number)
            finally:
                with self._lock:
                    self._state = EngineState.OPEN

            return number

    def begin_evolution_cycle_async(
        self,
        on_complete: Optional[Callable[[int], None]] = None,
    ) -> Future:
        """
        Run a cycle on the engine's worker thread.

        Requests queue behind each other on a single worker. The returned
        future resolves to the new generation number; on_complete receives
        the same number once the cycle and observer have finished.
        """
        executor = self._get_executor()

        def run() -> int:
            number = self.begin_evolution_cycle()
            if on_complete is not None:
                on_complete(number)
            return number

        future = executor.submit(run)
        future.add_done_callback(self._log_async_failure)
        return future

    def _build_next_generation(
        self,
        generation: Generation,
        ranking: List[int],
    ) -> Tuple[Generation, Counter]:
        """Breed children into the first half, mutated copies fill the rest."""
        size = self.config.generation_size
        ranked = [generation.genomes[i] for i in ranking]
        pairs = breeding_pairs(len(ranked))
        rates = self.config.mutation_rates

        genomes: List[WeightMap] = []
        for k in range(size // 2):
            a, b = pairs[k % len(pairs)]
            genomes.append(breed(ranked[a], ranked[b], self._topology, self.rng))

        styles: Counter = Counter()
        for index in range(size // 2, size):
            genome = ranked[index % len(ranked)].copy()
            genomes.append(genome)
            result = mutate(genome, self._topology, self.rng, rates)
            styles[result.style.value] += 1

        return Generation(genomes), styles

    def _cycle_statistics(
        self,
        generation: Generation,
        ranking: List[int],
        averages: List[Optional[float]],
        styles: Counter,
    ) -> Dict[str, Any]:
        reported = [a for a in averages if a is not None]
        return {
            "best_fitness": averages[ranking[0]] if ranking else None,
            "mean_fitness": float(np.mean(reported)) if reported else None,
            "reported_genomes": len(reported),
            "total_reports": sum(generation.report_counts),
            "mutation_styles": dict(styles),
        }

    # ==================== Accessors ====================

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state

    def generation_count(self) -> int:
        """Number of completed evolution cycles."""
        with self._lock:
            return self._generation_number

    def current_genome_count(self) -> int:
        with self._lock:
            return self._current.size

    def get_genome(self, index: int) -> WeightMap:
        """
        Genome at a slot of the current generation.

        The genome is shared with the engine; treat it as read-only.
        """
        with self._lock:
            if not 0 <= index < self._current.size:
                raise IndexError(
                    f"Genome index {index} out of range [0, {self._current.size})"
                )
            return self._current.genomes[index]

    def current_genomes(self) -> Tuple[int, List[WeightMap]]:
        """(generation number, genomes) captured atomically."""
        with self._lock:
            return self._generation_number, list(self._current.genomes)

    def fitness_snapshot(self) -> List[Optional[float]]:
        """Average fitness per slot of the current generation (None if unreported)."""
        with self._lock:
            return self._current.averages()

    def history(self) -> List[Generation]:
        """Retired generations, oldest first."""
        with self._lock:
            return list(self._history)

    def get_best(self) -> Tuple[Optional[WeightMap], Optional[float]]:
        """Best genome of the most recently retired generation and its fitness."""
        with self._lock:
            return self._best

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "generation": self._generation_number,
                "state": self._state.value,
                "generation_size": self.config.generation_size,
                "buffered_generations": len(self._history),
                "topology": str(self._topology),
                "last_cycle": dict(self._last_cycle),
            }

    # ==================== Worker lifecycle ====================

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._closed:
                raise RuntimeError("GeneticTeacher has been shut down")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="evolution-cycle"
                )
            return self._executor

    @staticmethod
    def _log_async_failure(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Asynchronous evolution cycle failed: {error}")

    def shutdown(self, wait: bool = True) -> None:
        """Stop the async worker. Synchronous cycles keep working."""
        with self._lock:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def __enter__(self) -> "GeneticTeacher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
