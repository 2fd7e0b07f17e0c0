"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from disk_probe.core.config import ProbeConfig, load_config

type ConfigFactory = Callable[..., ProbeConfig]


@pytest.fixture
def make_config() -> ConfigFactory:
    """Build a ProbeConfig with fast timings suitable for tests.

    Keyword arguments are section names mapping to field overrides, e.g.
    ``make_config(probe={"threshold_bytes": 10})``.
    """

    def _make(**sections: dict[str, object]) -> ProbeConfig:
        overrides: dict[str, dict[str, object]] = {
            "probe": {"path": "/mnt/storage", "threshold_bytes": 1_000},
            "monitoring": {
                "poll_interval": 0.01,
                "error_backoff": 0.01,
                "status_interval": 0.05,
                "measure_timeout": 1.0,
            },
            "http": {"listen_address": "127.0.0.1:0"},
            "application": {"syslog_enabled": False},
        }
        for section, values in sections.items():
            overrides.setdefault(section, {}).update(values)
        return load_config(overrides=overrides)

    return _make
