"""Utility functions for the mission kernel."""

from mission_kernel.utils.hashing import canonicalize_json, hash_log_entry, hash_payload

__all__ = ["canonicalize_json", "hash_payload", "hash_log_entry"]
