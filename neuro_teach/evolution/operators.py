"""
neuro_teach/evolution/operators.py

Selection, breeding and mutation over WeightMap genomes.

All operators are plain functions. Randomness always comes from the
numpy Generator passed in, so a seeded engine is reproducible.

Breeding and mutation never change a genome's shape: breeding writes into a
fresh scaffold of the template topology, and swaps only ever exchange
neurons or layers of identical shape.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple
import numpy as np

from neuro_teach.core.network import Topology
from neuro_teach.errors import ConfigurationError
from .generation import Generation
from .genome import WeightMap

# Multipliers for point mutation and genesis variation are drawn from here
MULTIPLIER_LOW = -2.0
MULTIPLIER_HIGH = 2.0


class BreedingStrategy(Enum):
    """Crossover styles. One is drawn uniformly per breeding call."""
    LAYER_ALTERNATION = "layer_alternation"
    HALF_SPLIT = "half_split"
    NEURON_ALTERNATION = "neuron_alternation"


class MutationStyle(Enum):
    """Mutation styles. One is drawn uniformly per mutation call."""
    POINT = "point"
    LAYER_SWAP = "layer_swap"
    INTRA_LAYER_SWAP = "intra_layer_swap"
    GLOBAL_SWAP = "global_swap"


@dataclass
class MutationRates:
    """
    Mutation intensity per style, relative to the genome's neuron count.

    A call performs 1 + floor(rate * total_neurons * u) elementary
    mutations, with u uniform in [0, 1).
    """
    point: float = 0.85
    layer_swap: float = 0.25
    intra_layer_swap: float = 0.5
    global_swap: float = 0.75

    def __post_init__(self):
        for name, value in self.as_dict().items():
            if value < 0:
                raise ConfigurationError(f"Mutation rate '{name}' must be >= 0, got {value}")

    def as_dict(self) -> Dict[str, float]:
        return {
            "point": self.point,
            "layer_swap": self.layer_swap,
            "intra_layer_swap": self.intra_layer_swap,
            "global_swap": self.global_swap,
        }

    def for_style(self, style: MutationStyle) -> float:
        return {
            MutationStyle.POINT: self.point,
            MutationStyle.LAYER_SWAP: self.layer_swap,
            MutationStyle.INTRA_LAYER_SWAP: self.intra_layer_swap,
            MutationStyle.GLOBAL_SWAP: self.global_swap,
        }[style]

    def max_mutations(self, style: MutationStyle, genome: WeightMap) -> int:
        """Upper bound on the elementary mutations one call can perform."""
        return 1 + int(self.for_style(style) * genome.total_neurons)


@dataclass
class MutationResult:
    """
    What a mutation call did.

    mutations is the number of draws made, not the number of changes. A swap
    draw that picks the same slot twice, or a layer swap in a topology where
    no two layers share a shape, leaves the genome as it was.
    """
    style: MutationStyle
    mutations: int


def _choose(options, rng: np.random.Generator):
    options = list(options)
    return options[int(rng.integers(len(options)))]


# ==================== Selection ====================

def rank_generation(generation: Generation) -> List[int]:
    """
    Rank slot indices from fittest to least fit.

    Each pass scans for the unselected slot with the greatest average
    fitness and marks it SELECTED. Ties go to the earlier slot. Slots
    without reports never beat a reported slot and keep their index order.
    """
    averages = generation.averages()
    ranking: List[int] = []

    for _ in range(generation.size):
        best: Optional[int] = None
        best_avg: Optional[float] = None

        for j in range(generation.size):
            if generation.is_selected(j):
                continue
            avg = averages[j]
            if best is None:
                best, best_avg = j, avg
            elif avg is not None and (best_avg is None or avg > best_avg):
                best, best_avg = j, avg

        if best is None:
            break
        generation.mark_selected(best)
        ranking.append(best)

    return ranking


def breeding_pairs(generation_size: int) -> List[Tuple[int, int]]:
    """
    Rank pairs used as parents: (0, 1), (2, 3), ... within the top half.

    The top half holds at least two ranks when the generation has two or
    more genomes. A single genome is paired with itself.
    """
    if generation_size < 1:
        return []
    top = min(max(2, generation_size // 2), generation_size)
    if top == 1:
        return [(0, 0)]
    return [(i, i + 1) for i in range(0, top - 1, 2)]


# ==================== Breeding ====================

def breed(
    parent_a: WeightMap,
    parent_b: WeightMap,
    topology: Topology,
    rng: np.random.Generator,
    strategy: Optional[BreedingStrategy] = None,
) -> WeightMap:
    """
    Cross two parents into one fresh child genome.

    Every neuron slot of the child (weights and bias) is copied from
    exactly one parent.
    """
    parent_a.require_topology(topology, "breeding")
    parent_b.require_topology(topology, "breeding")

    strategy = strategy or _choose(BreedingStrategy, rng)
    child = WeightMap.from_topology(topology)

    if strategy is BreedingStrategy.LAYER_ALTERNATION:
        for layer in range(child.num_layers):
            source = parent_a if rng.random() < 0.5 else parent_b
            child.set_layer(layer, source.get_layer(layer))

    elif strategy is BreedingStrategy.HALF_SPLIT:
        for layer in range(child.num_layers):
            count = child.neurons_in_layer(layer)
            half = count // 2
            for neuron in range(count):
                source = parent_a if neuron < half else parent_b
                child.set_neuron(layer, neuron, *source.get_neuron(layer, neuron))

    elif strategy is BreedingStrategy.NEURON_ALTERNATION:
        from_a = True
        for layer, neuron in child.iter_neurons():
            source = parent_a if from_a else parent_b
            child.set_neuron(layer, neuron, *source.get_neuron(layer, neuron))
            from_a = not from_a

    return child


# ==================== Mutation ====================

def mutate(
    genome: WeightMap,
    topology: Topology,
    rng: np.random.Generator,
    rates: Optional[MutationRates] = None,
    style: Optional[MutationStyle] = None,
) -> MutationResult:
    """Perturb a genome in place. Its shape is never changed."""
    genome.require_topology(topology, "mutation")

    rates = rates or MutationRates()
    style = style or _choose(MutationStyle, rng)
    count = 1 + int(rates.for_style(style) * genome.total_neurons * rng.random())

    if style is MutationStyle.POINT:
        _point_mutations(genome, count, rng)
    elif style is MutationStyle.LAYER_SWAP:
        _layer_swaps(genome, count, rng)
    elif style is MutationStyle.INTRA_LAYER_SWAP:
        _intra_layer_swaps(genome, count, rng)
    elif style is MutationStyle.GLOBAL_SWAP:
        _global_swaps(genome, count, rng)

    return MutationResult(style=style, mutations=count)


def _point_mutations(genome: WeightMap, count: int, rng: np.random.Generator) -> None:
    for _ in range(count):
        layer = int(rng.integers(genome.num_layers))
        neuron = int(rng.integers(genome.neurons_in_layer(layer)))
        index = int(rng.integers(genome.weights_for_neuron(layer, neuron)))
        multiplier = rng.uniform(MULTIPLIER_LOW, MULTIPLIER_HIGH)
        genome.set_weight(layer, neuron, index, genome.get_weight(layer, neuron, index) * multiplier)


def _layer_swaps(genome: WeightMap, count: int, rng: np.random.Generator) -> None:
    shape = genome.shape
    for _ in range(count):
        src = int(rng.integers(genome.num_layers))
        compatible = [i for i in range(genome.num_layers) if shape[i] == shape[src]]
        dst = compatible[int(rng.integers(len(compatible)))]
        if src == dst:
            continue
        buffer = genome.get_layer(dst)
        genome.set_layer(dst, genome.get_layer(src))
        genome.set_layer(src, buffer)


def _swap_neurons(genome: WeightMap, src: Tuple[int, int], dst: Tuple[int, int]) -> None:
    if src == dst:
        return
    buffer = genome.get_neuron(*dst)
    genome.set_neuron(*dst, *genome.get_neuron(*src))
    genome.set_neuron(*src, *buffer)


def _intra_layer_swaps(genome: WeightMap, count: int, rng: np.random.Generator) -> None:
    target = int(rng.integers(genome.num_layers))
    neurons = genome.neurons_in_layer(target)
    for _ in range(count):
        src = int(rng.integers(neurons))
        dst = int(rng.integers(neurons))
        _swap_neurons(genome, (target, src), (target, dst))


def _global_swaps(genome: WeightMap, count: int, rng: np.random.Generator) -> None:
    # Neurons can only trade places with neurons taking the same input count
    by_inputs: Dict[int, List[Tuple[int, int]]] = {}
    for layer, neuron in genome.iter_neurons():
        by_inputs.setdefault(genome.weights_for_neuron(layer, neuron), []).append((layer, neuron))
    neurons = list(genome.iter_neurons())

    for _ in range(count):
        src = neurons[int(rng.integers(len(neurons)))]
        group = by_inputs[genome.weights_for_neuron(*src)]
        dst = group[int(rng.integers(len(group)))]
        _swap_neurons(genome, src, dst)


# ==================== Genesis ====================

def random_variation(
    seed: WeightMap,
    count: int,
    rng: np.random.Generator,
) -> List[WeightMap]:
    """
    Initial genomes: copies of the seed with every weight scaled by a
    multiplier drawn from [-2.0, 2.0).
    """
    genomes = []
    for _ in range(count):
        genome = seed.copy()
        for layer in range(genome.num_layers):
            genes = genome.get_layer(layer)
            genes.weights *= rng.uniform(MULTIPLIER_LOW, MULTIPLIER_HIGH, size=genes.weights.shape)
            genome.set_layer(layer, genes)
        genomes.append(genome)
    return genomes
