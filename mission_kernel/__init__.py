"""
Mission Kernel - field-service mission workflow core

A role-gated mission lifecycle with:
- Declarative transition table with typed side-effects
- Atomic, per-mission serialized transitions
- Idempotent state-changing operations with response caching
- Append-only, hash-chained workflow log
- Business-hours gate evaluated in Europe/Paris
- Risk scoring, anomaly detection and daily statistics
"""

__version__ = "0.1.0"
