"""
neuro_teach/evolution/generation.py

A generation: genome slots plus their fitness accumulators.

Each slot holds a genome, the running sum of reported fitness, the number of
reports, and a selection state. Once a slot has been picked by a ranking
pass it is SELECTED and accepts no further reports.

Generation is not thread-safe on its own. The engine guards every access
with its state lock.
"""

from __future__ import annotations
from enum import Enum
from typing import List, Optional, Sequence

from .genome import WeightMap


class SlotState(Enum):
    """Selection state of a genome slot within one ranking pass."""
    UNSELECTED = "unselected"
    SELECTED = "selected"


class Generation:
    """
    Fixed-size cohort of genomes under evaluation.

    The four per-slot arrays (genomes, fitness_sums, report_counts, states)
    always have the same length.
    """

    def __init__(self, genomes: Sequence[WeightMap]):
        self.genomes: List[WeightMap] = list(genomes)
        size = len(self.genomes)
        self.fitness_sums: List[float] = [0.0] * size
        self.report_counts: List[int] = [0] * size
        self.states: List[SlotState] = [SlotState.UNSELECTED] * size

    def __len__(self) -> int:
        return len(self.genomes)

    @property
    def size(self) -> int:
        return len(self.genomes)

    def index_of(self, genome: WeightMap) -> Optional[int]:
        """Slot index of this exact genome object, or None."""
        for i, candidate in enumerate(self.genomes):
            if candidate is genome:
                return i
        return None

    def record_fitness(self, score: float, genome: WeightMap) -> bool:
        """
        Add a fitness report for a genome.

        Returns False (and records nothing) if the genome is not part of this
        generation or its slot has already been selected.
        """
        index = self.index_of(genome)
        if index is None or self.states[index] is SlotState.SELECTED:
            return False
        self.fitness_sums[index] += float(score)
        self.report_counts[index] += 1
        return True

    def average_fitness(self, index: int) -> Optional[float]:
        """Mean reported fitness, or None when the slot has no reports."""
        count = self.report_counts[index]
        if count <= 0:
            return None
        return self.fitness_sums[index] / count

    def averages(self) -> List[Optional[float]]:
        return [self.average_fitness(i) for i in range(self.size)]

    def is_selected(self, index: int) -> bool:
        return self.states[index] is SlotState.SELECTED

    def mark_selected(self, index: int) -> None:
        self.states[index] = SlotState.SELECTED

    def reset_selection(self) -> None:
        """Reopen every slot to reports."""
        self.states = [SlotState.UNSELECTED] * self.size

    def trimmed(self, indices: Sequence[int]) -> "Generation":
        """
        New generation holding the given slots, in the given order.

        Genome objects are shared, accumulators and states are copied.
        """
        retired = Generation([self.genomes[i] for i in indices])
        retired.fitness_sums = [self.fitness_sums[i] for i in indices]
        retired.report_counts = [self.report_counts[i] for i in indices]
        retired.states = [self.states[i] for i in indices]
        return retired

    def __repr__(self) -> str:
        reported = sum(1 for c in self.report_counts if c > 0)
        return f"Generation(size={self.size}, reported={reported})"
