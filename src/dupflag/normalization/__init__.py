"""Matching-key normalization for record names."""

from .normalizer import normalize_name

__all__ = ["normalize_name"]
