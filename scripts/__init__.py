"""Operational scripts for the mission workflow (``python -m scripts.maintenance``)."""
