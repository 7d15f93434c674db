"""AI task orchestration layer for the home-maintenance marketplace."""

__version__ = "0.1.0"
