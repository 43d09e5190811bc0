"""Sharpline: deterministic pick engine and run pipeline."""

__version__ = "0.1.0"
