"""
neuro_teach/evolution/

Genetic evolution of network weights.

Key insight: evaluation is the expensive, parallel part.
- Hand out genomes (cheap, centralized)
- Evaluate genomes (slow, any number of threads)
- Rank, breed and mutate (cheap, one cycle at a time)

Pieces:
- WeightMap: one candidate set of weights and biases
- Generation: genomes plus their fitness accumulators
- operators: ranking, breeding, mutation, genesis
- GeneticTeacher: the engine tying it together
"""

from .genome import LayerGenes, WeightMap
from .generation import Generation, SlotState
from .operators import (
    BreedingStrategy,
    MutationRates,
    MutationResult,
    MutationStyle,
    breed,
    breeding_pairs,
    mutate,
    random_variation,
    rank_generation,
)
from .engine import EngineConfig, EngineState, GenerationObserver, GeneticTeacher
from .fitness import (
    CallableFitness,
    DatasetFitness,
    EvaluationResult,
    FitnessFunction,
    get_dataset,
)

__all__ = [
    "LayerGenes",
    "WeightMap",
    "Generation",
    "SlotState",
    "BreedingStrategy",
    "MutationRates",
    "MutationResult",
    "MutationStyle",
    "breed",
    "breeding_pairs",
    "mutate",
    "random_variation",
    "rank_generation",
    "EngineConfig",
    "EngineState",
    "GenerationObserver",
    "GeneticTeacher",
    "CallableFitness",
    "DatasetFitness",
    "EvaluationResult",
    "FitnessFunction",
    "get_dataset",
]
