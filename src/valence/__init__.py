"""Valence - declarative, pluggable architecture validation engine."""

__version__ = "1.0.0"
