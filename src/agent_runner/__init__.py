"""Asynchronous agent task runner."""

__version__ = "0.1.0"
