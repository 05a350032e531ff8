"""
core/activations.py

Neuron activation functions.

Each activation carries its derivative alongside the function itself.
Evolution never uses the derivative, but networks built here can be
shared with code that does.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict
import numpy as np


def sigmoid(x: np.ndarray) -> np.ndarray:
    """Logistic function 1 / (1 + e^-x), bounded (0, 1)."""
    x = np.clip(x, -500, 500)
    return 1.0 / (1.0 + np.exp(-x))


def sigmoid_derivative(x: np.ndarray) -> np.ndarray:
    s = sigmoid(x)
    return s * (1.0 - s)


def tanh(x: np.ndarray) -> np.ndarray:
    return np.tanh(x)


def tanh_derivative(x: np.ndarray) -> np.ndarray:
    return 1.0 - np.tanh(x) ** 2


def relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(0.0, x)


def relu_derivative(x: np.ndarray) -> np.ndarray:
    return (x > 0).astype(np.float64)


def linear(x: np.ndarray) -> np.ndarray:
    return x


def linear_derivative(x: np.ndarray) -> np.ndarray:
    return np.ones_like(x)


@dataclass(frozen=True)
class Activation:
    """An activation function paired with its derivative."""
    name: str
    func: Callable[[np.ndarray], np.ndarray]
    derivative: Callable[[np.ndarray], np.ndarray]

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.func(np.asarray(x, dtype=np.float64))

    def grad(self, x: np.ndarray) -> np.ndarray:
        return self.derivative(np.asarray(x, dtype=np.float64))


SIGMOID = Activation("sigmoid", sigmoid, sigmoid_derivative)
TANH = Activation("tanh", tanh, tanh_derivative)
RELU = Activation("relu", relu, relu_derivative)
LINEAR = Activation("linear", linear, linear_derivative)

# Default for every neuron unless a network is told otherwise
DEFAULT_ACTIVATION = SIGMOID

ACTIVATIONS: Dict[str, Activation] = {
    a.name: a for a in (SIGMOID, TANH, RELU, LINEAR)
}


def get_activation(name: str) -> Activation:
    """Look up an activation by name."""
    if name not in ACTIVATIONS:
        available = ", ".join(ACTIVATIONS)
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")
    return ACTIVATIONS[name]
