"""HTTP surface of disk-probe."""

from disk_probe.api.endpoint import classify_usage, create_app, serve

__all__ = ["classify_usage", "create_app", "serve"]
