"""Adaptive retrieval feedback loop backend."""

__version__ = "0.1.0"
