"""Accumulation Tracker - whale accumulation detection and alerting engine."""

__version__ = "0.1.0"
