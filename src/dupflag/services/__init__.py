"""Duplicate-detection services: index scanner, reconciler and real-time detector."""
