"""Disk Probe - HTTP liveness/capacity probe for the disk usage of one path.

This package periodically measures how many bytes a filesystem path uses,
caches the latest measurement, and answers HTTP health checks with 200, 500
or 503 depending on whether usage is known and within the threshold.
"""

from disk_probe.__main__ import main

__all__ = ["main"]
