"""
core/network.py

The feed-forward network whose weights are evolved.

The network is deliberately plain: a weighted sum plus bias, passed through
an activation, layer after layer. The first layer is an input layer whose
neurons each see exactly one input value through a single weight.

The evolution engine only needs two things from a network:
- its Topology (layer count, neurons per layer, inputs per neuron)
- somewhere to write a genome's weights before evaluation
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import numpy as np

from neuro_teach.errors import ConfigurationError, ShapeMismatchError
from .activations import Activation, DEFAULT_ACTIVATION


@dataclass(frozen=True)
class Topology:
    """
    Layer shape shared by a network and every genome evolved for it.

    Layer 0 neurons take one input each; layer i > 0 neurons take one input
    per neuron of layer i - 1.
    """
    layer_sizes: Tuple[int, ...]

    def __post_init__(self):
        sizes = tuple(self.layer_sizes)
        if not sizes:
            raise ConfigurationError("Topology needs at least one layer")
        for i, size in enumerate(sizes):
            if int(size) != size or size < 1:
                raise ConfigurationError(
                    f"Layer {i} must have a positive neuron count, got {size!r}"
                )
        object.__setattr__(self, "layer_sizes", tuple(int(s) for s in sizes))

    @classmethod
    def from_layer_sizes(cls, *sizes: int) -> "Topology":
        """Topology(2, 3, 1) style constructor."""
        if len(sizes) == 1 and isinstance(sizes[0], (list, tuple)):
            sizes = tuple(sizes[0])
        return cls(tuple(sizes))

    @property
    def num_layers(self) -> int:
        return len(self.layer_sizes)

    def neurons_in_layer(self, layer: int) -> int:
        self._check_layer(layer)
        return self.layer_sizes[layer]

    def inputs_per_neuron(self, layer: int) -> int:
        self._check_layer(layer)
        return 1 if layer == 0 else self.layer_sizes[layer - 1]

    @property
    def shape(self) -> List[Tuple[int, int]]:
        """(neurons, inputs per neuron) for every layer."""
        return [
            (self.layer_sizes[i], self.inputs_per_neuron(i))
            for i in range(self.num_layers)
        ]

    @property
    def total_neurons(self) -> int:
        return sum(self.layer_sizes)

    @property
    def total_weights(self) -> int:
        return sum(n * k for n, k in self.shape)

    def _check_layer(self, layer: int) -> None:
        if not 0 <= layer < self.num_layers:
            raise IndexError(
                f"Layer index {layer} out of range for {self.num_layers} layers"
            )

    def __str__(self) -> str:
        return "-".join(str(s) for s in self.layer_sizes)


class FeedForwardNetwork:
    """
    A layered network of neurons, fully connected between adjacent layers.

    Weights default to 1.0 and biases to 0.0, so a freshly built network
    is a deterministic template that genome variation can scale.

    Example:
        net = FeedForwardNetwork(2, 3, 1)   # 2 inputs, 3 hidden, 1 output
        out = net.forward([0.0, 1.0])
    """

    def __init__(self, *layer_sizes: int, activation: Optional[Activation] = None):
        if len(layer_sizes) == 1 and isinstance(layer_sizes[0], (list, tuple)):
            layer_sizes = tuple(layer_sizes[0])
        if len(layer_sizes) < 2:
            raise ConfigurationError(
                "A network needs at least an input and an output layer"
            )

        self._topology = Topology(tuple(layer_sizes))
        self.activation = activation or DEFAULT_ACTIVATION

        self.weights: List[np.ndarray] = [
            np.ones((n, k), dtype=np.float64) for n, k in self._topology.shape
        ]
        self.biases: List[np.ndarray] = [
            np.zeros(n, dtype=np.float64) for n, _ in self._topology.shape
        ]
        self._outputs = np.zeros(self._topology.layer_sizes[-1])

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def num_inputs(self) -> int:
        return self._topology.layer_sizes[0]

    @property
    def num_outputs(self) -> int:
        return self._topology.layer_sizes[-1]

    # ==================== Parameters ====================

    def get_layer_parameters(self, layer: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return copies of (weights, biases) for one layer."""
        self._topology._check_layer(layer)
        return self.weights[layer].copy(), self.biases[layer].copy()

    def set_layer_parameters(
        self,
        layer: int,
        weights: np.ndarray,
        biases: np.ndarray,
    ) -> None:
        """Overwrite one layer's weights and biases. Shapes cannot change."""
        self._topology._check_layer(layer)
        weights = np.asarray(weights, dtype=np.float64)
        biases = np.asarray(biases, dtype=np.float64)

        if weights.shape != self.weights[layer].shape:
            raise ShapeMismatchError(
                f"Layer {layer} weights must have shape {self.weights[layer].shape}, "
                f"got {weights.shape}"
            )
        if biases.shape != self.biases[layer].shape:
            raise ShapeMismatchError(
                f"Layer {layer} biases must have shape {self.biases[layer].shape}, "
                f"got {biases.shape}"
            )

        self.weights[layer] = weights.copy()
        self.biases[layer] = biases.copy()

    def randomize_weights(self, rng: Optional[np.random.Generator] = None) -> None:
        """Draw every weight and bias uniformly from [0, 1)."""
        rng = rng or np.random.default_rng()
        for layer, (n, k) in enumerate(self._topology.shape):
            self.weights[layer] = rng.random((n, k))
            self.biases[layer] = rng.random(n)

    def zero_weights(self) -> None:
        for layer in range(self._topology.num_layers):
            self.weights[layer].fill(0.0)
            self.biases[layer].fill(0.0)

    # ==================== Evaluation ====================

    def forward(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Propagate inputs through every layer.

        Accepts one sample of shape (num_inputs,) or a batch of shape
        (batch, num_inputs). Returns outputs of matching rank.
        """
        x = np.asarray(inputs, dtype=np.float64)
        single = x.ndim == 1
        x = np.atleast_2d(x)

        if x.shape[1] != self.num_inputs:
            raise ShapeMismatchError(
                f"Expected {self.num_inputs} inputs, got {x.shape[1]}"
            )

        # Input layer: one weight per neuron, one value per neuron
        x = self.activation(x * self.weights[0][:, 0] + self.biases[0])

        for layer in range(1, self._topology.num_layers):
            x = self.activation(x @ self.weights[layer].T + self.biases[layer])

        self._outputs = x[0].copy() if single else x.copy()
        return x[0] if single else x

    def outputs(self) -> np.ndarray:
        """Outputs from the most recent forward pass."""
        return self._outputs.copy()

    def __repr__(self) -> str:
        return f"FeedForwardNetwork({self._topology}, activation={self.activation.name})"
