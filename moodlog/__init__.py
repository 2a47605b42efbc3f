"""
Moodlog - A single-user mood journal with a weekly report.

This package provides a local SQLite-backed store of mood entries with live
queries, a weekly aggregation service on top of it, and an HTTP API and CLI
that act as thin presentation layers over both.
"""

__version__ = "0.1.0"
