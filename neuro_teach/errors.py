"""
neuro_teach/errors.py

Exceptions shared by the network, the evolution engine and the services.

Index errors on genome accessors use the builtin IndexError.
"""


class NeuroTeachError(Exception):
    """Base class for all neuro_teach errors."""


class ConfigurationError(NeuroTeachError, ValueError):
    """Invalid construction parameters for an engine, topology or service."""


class ShapeMismatchError(NeuroTeachError, ValueError):
    """A genome does not match the topology it is used with."""
