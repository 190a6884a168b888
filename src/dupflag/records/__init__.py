"""Record API access package for dupflag.

Holds the record snapshot and duplicate-marker models, the httpx client for
the paginated record API, and the idempotent tagging helpers built on it.
"""
