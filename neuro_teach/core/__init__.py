"""
Core network components.

- network: Topology and the feed-forward network being evolved
- activations: Neuron activation functions
"""

from .activations import Activation, ACTIVATIONS, DEFAULT_ACTIVATION, get_activation
from .network import FeedForwardNetwork, Topology

__all__ = [
    "Activation",
    "ACTIVATIONS",
    "DEFAULT_ACTIVATION",
    "get_activation",
    "FeedForwardNetwork",
    "Topology",
]
