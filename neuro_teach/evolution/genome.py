"""
neuro_teach/evolution/genome.py

Genome representation for weight evolution.

A genome (WeightMap) holds every weight and bias of one candidate network,
laid out exactly like the network: per layer, per neuron, a weight vector
and a scalar bias. The shape is jagged (layers differ in size) and fixed at
creation. Evolution only ever changes values.

Genomes are compared by identity, not by value. The engine matches fitness
reports to genome slots by reference.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import numpy as np

from neuro_teach.core.network import FeedForwardNetwork, Topology
from neuro_teach.errors import ShapeMismatchError


@dataclass
class LayerGenes:
    """Weights (neurons x inputs) and biases (neurons,) for one layer."""
    weights: np.ndarray
    biases: np.ndarray

    def __post_init__(self):
        self.weights = np.array(self.weights, dtype=np.float64)
        self.biases = np.array(self.biases, dtype=np.float64)
        if self.weights.ndim != 2:
            raise ShapeMismatchError(
                f"Layer weights must be 2-D, got {self.weights.ndim}-D"
            )
        if self.biases.shape != (self.weights.shape[0],):
            raise ShapeMismatchError(
                f"Layer biases must have shape ({self.weights.shape[0]},), "
                f"got {self.biases.shape}"
            )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.weights.shape

    def copy(self) -> "LayerGenes":
        return LayerGenes(self.weights.copy(), self.biases.copy())


class WeightMap:
    """
    Full set of weights and biases for one network.

    All index arguments must satisfy 0 <= index < bound, otherwise an
    IndexError is raised. Accessors hand out copies; use the setters to
    change values.
    """

    def __init__(self, topology: Topology, layers: Optional[Sequence[LayerGenes]] = None):
        self._topology = topology

        if layers is None:
            layers = [
                LayerGenes(np.ones((n, k)), np.zeros(n)) for n, k in topology.shape
            ]

        if len(layers) != topology.num_layers:
            raise ShapeMismatchError(
                f"Expected {topology.num_layers} layers, got {len(layers)}"
            )
        for i, (layer, expected) in enumerate(zip(layers, topology.shape)):
            if layer.shape != expected:
                raise ShapeMismatchError(
                    f"Layer {i} has shape {layer.shape}, topology expects {expected}"
                )

        self._layers: List[LayerGenes] = [layer.copy() for layer in layers]

    # ==================== Construction ====================

    @classmethod
    def from_topology(
        cls,
        topology: Topology,
        weight: float = 1.0,
        bias: float = 0.0,
    ) -> "WeightMap":
        """Default-valued genome shaped like the topology."""
        layers = [
            LayerGenes(np.full((n, k), weight), np.full(n, bias))
            for n, k in topology.shape
        ]
        return cls(topology, layers)

    @classmethod
    def from_network(cls, network: FeedForwardNetwork) -> "WeightMap":
        """Snapshot a network's current weights and biases."""
        topology = network.topology
        layers = []
        for i in range(topology.num_layers):
            weights, biases = network.get_layer_parameters(i)
            layers.append(LayerGenes(weights, biases))
        return cls(topology, layers)

    def copy(self) -> "WeightMap":
        """Deep copy. The copy is a distinct genome for fitness bookkeeping."""
        return WeightMap(self._topology, self._layers)

    # ==================== Shape ====================

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def num_layers(self) -> int:
        return len(self._layers)

    def neurons_in_layer(self, layer: int) -> int:
        self._check_layer(layer)
        return self._layers[layer].shape[0]

    def weights_for_neuron(self, layer: int, neuron: int) -> int:
        self._check_neuron(layer, neuron)
        return self._layers[layer].shape[1]

    @property
    def shape(self) -> List[Tuple[int, int]]:
        return [layer.shape for layer in self._layers]

    @property
    def total_neurons(self) -> int:
        return sum(layer.shape[0] for layer in self._layers)

    def matches(self, topology: Topology) -> bool:
        return self.shape == topology.shape

    def require_topology(self, topology: Topology, context: str = "operation") -> None:
        """Raise ShapeMismatchError unless this genome fits the topology."""
        if not self.matches(topology):
            raise ShapeMismatchError(
                f"Genome shape {self.shape} does not match topology "
                f"{topology} during {context}"
            )

    def iter_neurons(self) -> Iterator[Tuple[int, int]]:
        """Yield (layer, neuron) for every neuron, layer by layer."""
        for layer_idx, layer in enumerate(self._layers):
            for neuron_idx in range(layer.shape[0]):
                yield layer_idx, neuron_idx

    # ==================== Layer access ====================

    def get_layer(self, layer: int) -> LayerGenes:
        self._check_layer(layer)
        return self._layers[layer].copy()

    def set_layer(self, layer: int, genes: LayerGenes) -> None:
        self._check_layer(layer)
        expected = self._layers[layer].shape
        if genes.shape != expected:
            raise ShapeMismatchError(
                f"Layer {layer} must have shape {expected}, got {genes.shape}"
            )
        self._layers[layer] = genes.copy()

    # ==================== Neuron access ====================

    def get_neuron_weights(self, layer: int, neuron: int) -> np.ndarray:
        self._check_neuron(layer, neuron)
        return self._layers[layer].weights[neuron].copy()

    def set_neuron_weights(self, layer: int, neuron: int, weights: Sequence[float]) -> None:
        self._check_neuron(layer, neuron)
        weights = np.asarray(weights, dtype=np.float64)
        expected = self._layers[layer].shape[1]
        if weights.shape != (expected,):
            raise ShapeMismatchError(
                f"Neuron ({layer}, {neuron}) takes {expected} weights, "
                f"got shape {weights.shape}"
            )
        self._layers[layer].weights[neuron] = weights

    def get_neuron_bias(self, layer: int, neuron: int) -> float:
        self._check_neuron(layer, neuron)
        return float(self._layers[layer].biases[neuron])

    def set_neuron_bias(self, layer: int, neuron: int, bias: float) -> None:
        self._check_neuron(layer, neuron)
        self._layers[layer].biases[neuron] = float(bias)

    def get_neuron(self, layer: int, neuron: int) -> Tuple[np.ndarray, float]:
        """(weights, bias) of one neuron."""
        return self.get_neuron_weights(layer, neuron), self.get_neuron_bias(layer, neuron)

    def set_neuron(self, layer: int, neuron: int, weights: Sequence[float], bias: float) -> None:
        self.set_neuron_weights(layer, neuron, weights)
        self.set_neuron_bias(layer, neuron, bias)

    def get_weight(self, layer: int, neuron: int, index: int) -> float:
        self._check_weight(layer, neuron, index)
        return float(self._layers[layer].weights[neuron, index])

    def set_weight(self, layer: int, neuron: int, index: int, value: float) -> None:
        self._check_weight(layer, neuron, index)
        self._layers[layer].weights[neuron, index] = float(value)

    # ==================== Network interop ====================

    def apply_to(self, network: FeedForwardNetwork) -> None:
        """Overwrite the network's weights and biases with this genome."""
        self.require_topology(network.topology, "application")
        for i, layer in enumerate(self._layers):
            network.set_layer_parameters(i, layer.weights, layer.biases)

    # ==================== Comparison / serialization ====================

    def same_values(self, other: "WeightMap") -> bool:
        """Value equality. Bookkeeping never uses this; it matches by identity."""
        if self.shape != other.shape:
            return False
        return all(
            np.array_equal(a.weights, b.weights) and np.array_equal(a.biases, b.biases)
            for a, b in zip(self._layers, other._layers)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "WeightMap",
            "layer_sizes": list(self._topology.layer_sizes),
            "layers": [
                {"weights": layer.weights.tolist(), "biases": layer.biases.tolist()}
                for layer in self._layers
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeightMap":
        topology = Topology(tuple(data["layer_sizes"]))
        layers = [
            LayerGenes(np.array(layer["weights"]), np.array(layer["biases"]))
            for layer in data["layers"]
        ]
        return cls(topology, layers)

    # ==================== Index checks ====================

    def _check_layer(self, layer: int) -> None:
        if not 0 <= layer < len(self._layers):
            raise IndexError(
                f"Layer index {layer} out of range [0, {len(self._layers)})"
            )

    def _check_neuron(self, layer: int, neuron: int) -> None:
        self._check_layer(layer)
        count = self._layers[layer].shape[0]
        if not 0 <= neuron < count:
            raise IndexError(
                f"Neuron index {neuron} out of range [0, {count}) in layer {layer}"
            )

    def _check_weight(self, layer: int, neuron: int, index: int) -> None:
        self._check_neuron(layer, neuron)
        count = self._layers[layer].shape[1]
        if not 0 <= index < count:
            raise IndexError(
                f"Weight index {index} out of range [0, {count}) "
                f"for neuron ({layer}, {neuron})"
            )

    def __repr__(self) -> str:
        return f"WeightMap(topology={self._topology}, id={id(self):#x})"
