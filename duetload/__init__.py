"""
HTTP load generator for one service or a duet of two deployments.

The package paces scenario arrivals per phase, replays request steps against a
single target or side by side against ``old`` and ``latest`` targets, and
summarises the recorded latencies with nearest-rank percentiles.
"""

from .main import main

__all__ = ["main"]
