"""Persistence package for dupflag.

Holds the SQLAlchemy schema for the name index, the scan progress row and the
reconciler checkpoint, plus the store classes that read and write them.
"""
