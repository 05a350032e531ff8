"""
Neuro-Teach: Genetic Weight Evolution for Feed-Forward Networks

A framework for training neural network weights with a generational
genetic algorithm instead of gradient descent. Evaluators report fitness
concurrently; the engine ranks, breeds and mutates the next generation.
"""

__version__ = "0.1.0"
