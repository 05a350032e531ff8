"""
neuro_teach/evolution/fitness.py

Fitness functions for scoring a network loaded with a genome.

Fitness is what we optimize. The engine never scores genomes itself;
evaluators apply a genome to a network, call a FitnessFunction, and report
the scalar back to the engine.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import numpy as np

from neuro_teach.core.network import FeedForwardNetwork


@dataclass
class EvaluationResult:
    """
    Result of evaluating one network.

    Contains the scalar fitness plus any diagnostics worth logging.
    """

    fitness: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fitness": self.fitness,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationResult":
        return cls(
            fitness=data["fitness"],
            metadata=data.get("metadata", {}),
        )


# Truth tables for the classic two-input logic problems
_BINARY_INPUTS = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])

DATASETS: Dict[str, Tuple[np.ndarray, np.ndarray]] = {
    "xor": (_BINARY_INPUTS, np.array([[0.0], [1.0], [1.0], [0.0]])),
    "and": (_BINARY_INPUTS, np.array([[0.0], [0.0], [0.0], [1.0]])),
    "or": (_BINARY_INPUTS, np.array([[0.0], [1.0], [1.0], [1.0]])),
    "nand": (_BINARY_INPUTS, np.array([[1.0], [1.0], [1.0], [0.0]])),
}


def get_dataset(name: str) -> Tuple[np.ndarray, np.ndarray]:
    """Return copies of (inputs, targets) for a built-in dataset."""
    if name not in DATASETS:
        available = ", ".join(DATASETS)
        raise ValueError(f"Unknown dataset '{name}'. Available: {available}")
    inputs, targets = DATASETS[name]
    return inputs.copy(), targets.copy()


class FitnessFunction(ABC):
    """
    Abstract base for fitness functions.

    A fitness function runs a network that already carries the genome's
    weights and returns how good its behavior is. Higher is better.
    """

    @abstractmethod
    def evaluate(self, network: FeedForwardNetwork) -> EvaluationResult:
        """
        Score a network.

        Args:
            network: Network with the candidate genome applied

        Returns:
            EvaluationResult with the fitness
        """
        pass


class DatasetFitness(FitnessFunction):
    """
    Fitness from supervised examples.

    Metrics:
    - "inverse_mse": 1 / (1 + mean squared error), in (0, 1]
    - "accuracy": fraction of outputs on the right side of the threshold
    """

    METRICS = ("inverse_mse", "accuracy")

    def __init__(
        self,
        inputs: np.ndarray,
        targets: np.ndarray,
        metric: str = "inverse_mse",
        threshold: float = 0.5,
    ):
        if metric not in self.METRICS:
            raise ValueError(f"Unknown metric '{metric}'. Available: {', '.join(self.METRICS)}")

        self.inputs = np.atleast_2d(np.asarray(inputs, dtype=np.float64))
        self.targets = np.asarray(targets, dtype=np.float64).reshape(len(self.inputs), -1)
        self.metric = metric
        self.threshold = threshold

    @classmethod
    def from_dataset(cls, name: str, metric: str = "inverse_mse") -> "DatasetFitness":
        inputs, targets = get_dataset(name)
        return cls(inputs, targets, metric=metric)

    def evaluate(self, network: FeedForwardNetwork) -> EvaluationResult:
        """Run every example through the network and score the outputs."""
        outputs = network.forward(self.inputs)
        errors = outputs - self.targets
        mse = float(np.mean(errors ** 2))

        predictions = outputs >= self.threshold
        expected = self.targets >= self.threshold
        accuracy = float(np.mean(predictions == expected))

        if self.metric == "accuracy":
            fitness = accuracy
        else:
            fitness = 1.0 / (1.0 + mse)

        return EvaluationResult(
            fitness=fitness,
            metadata={
                "mse": mse,
                "accuracy": accuracy,
                "samples": len(self.inputs),
            },
        )


class CallableFitness(FitnessFunction):
    """Wrap a plain function network -> float as a FitnessFunction."""

    def __init__(self, func, name: Optional[str] = None):
        self.func = func
        self.name = name or getattr(func, "__name__", "callable")

    def evaluate(self, network: FeedForwardNetwork) -> EvaluationResult:
        return EvaluationResult(fitness=float(self.func(network)), metadata={"name": self.name})
