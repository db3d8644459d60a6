"""Vriksh - run declarative labs on a single node."""

__version__ = "0.3.0"
