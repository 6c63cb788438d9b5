"""Local recording log store and upload pipeline for Replay recordings."""

__version__ = "0.1.0"
