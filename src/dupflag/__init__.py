"""dupflag: duplicate detection and tagging for an external record store.

This package contains the matching-key normalizer, the persistent name index,
the resumable index scanner, the bulk reconciler and the real-time detector
that together keep duplicate records marked in the record store.
"""
