"""Yard operations backend for the parts brokerage dashboard."""

__version__ = "1.0.0"
