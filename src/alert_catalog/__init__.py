"""Deduplicated catalog of reports referenced by alert notifications."""

__version__ = "0.1.0"
