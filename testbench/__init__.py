"""Synthetic traffic test bench for exercising an observability pipeline."""

__version__ = "0.1.0"
