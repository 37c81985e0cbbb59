"""Incremental cookbook and role synchronization from version control to a Chef server."""

__version__ = "0.1.0"
