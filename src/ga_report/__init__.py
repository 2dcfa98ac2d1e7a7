"""Consolidated Google Analytics region reports for batches of properties."""

__version__ = "0.1.0"
