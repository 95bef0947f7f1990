"""
CLI commands for microsift.

Provides command-line interface for screening, aggregation and extraction.
"""

__all__ = ["main", "screen", "sift"]
