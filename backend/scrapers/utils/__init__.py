"""Scraper utility functions."""

from .hashing import canonical_json_bytes, compute_json_hash, normalize_json_for_hash

__all__ = [
    "canonical_json_bytes",
    "compute_json_hash",
    "normalize_json_for_hash",
]
