"""Transparent TCP relay with traffic logging and heuristic protocol tagging."""

__version__ = "0.1.0"
