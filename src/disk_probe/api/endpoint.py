"""HTTP threshold endpoint served with aiohttp.

``GET /`` reads the cached measurement of the configured path from the
state store and answers with a plain-text status line:

- 503 ``Disk status not cached yet`` when nothing usable is cached
- 500 ``ERROR: Bytes exceed threshold (<bytes>/<threshold>)`` when usage is
  above the threshold and the override is off
- 200 ``OK: <path> is <bytes> bytes; override set to <true|false>`` otherwise

The handler is a pure read: it never touches the poll queues and holds the
store's read lock only for one lookup.
"""

import asyncio
import logging
from http import HTTPStatus

from aiohttp import web

from disk_probe.core.config import ProbeSettings
from disk_probe.core.state_store import StateStore
from disk_probe.types.models import ProbeResult

logger = logging.getLogger(__name__)

STATE_STORE_KEY: web.AppKey[StateStore] = web.AppKey("state_store", StateStore)
PROBE_SETTINGS_KEY: web.AppKey[ProbeSettings] = web.AppKey("probe_settings", ProbeSettings)

NOT_CACHED_BODY = "Disk status not cached yet\n"


def classify_usage(
    path: str,
    bytes_used: int | None,
    *,
    threshold: int,
    override: bool,
    treat_zero_as_missing: bool = True,
) -> ProbeResult:
    """Classify a cached measurement against the threshold.

    Args:
        path: Monitored path, echoed in the OK body
        bytes_used: Cached bytes used, None if never measured
        threshold: Bytes above which usage is an error
        override: Answer OK even over threshold
        treat_zero_as_missing: Treat a cached zero like a missing measurement

    Returns:
        Status code and body for the response

    Examples:
        >>> classify_usage("/mnt/storage", None, threshold=100, override=False).status
        503
        >>> classify_usage("/mnt/storage", 101, threshold=100, override=False).body
        'ERROR: Bytes exceed threshold (101/100)\\n'
        >>> classify_usage("/mnt/storage", 99, threshold=100, override=False).body
        'OK: /mnt/storage is 99 bytes; override set to false\\n'
    """
    if bytes_used is None or (bytes_used == 0 and treat_zero_as_missing):
        return ProbeResult(status=HTTPStatus.SERVICE_UNAVAILABLE, body=NOT_CACHED_BODY)

    if bytes_used > threshold and not override:
        return ProbeResult(
            status=HTTPStatus.INTERNAL_SERVER_ERROR,
            body=f"ERROR: Bytes exceed threshold ({bytes_used}/{threshold})\n",
        )

    return ProbeResult(
        status=HTTPStatus.OK,
        body=f"OK: {path} is {bytes_used} bytes; override set to {str(override).lower()}\n",
    )


async def handle_status(request: web.Request) -> web.Response:
    """Serve the disk usage classification for the configured path."""
    store = request.app[STATE_STORE_KEY]
    settings = request.app[PROBE_SETTINGS_KEY]

    bytes_used = await store.get(settings.path)
    result = classify_usage(
        settings.path,
        bytes_used,
        threshold=settings.threshold_bytes,
        override=settings.override,
        treat_zero_as_missing=settings.treat_zero_as_missing,
    )

    if not result.ok:
        logger.debug(
            "Probe answered %d",
            result.status,
            extra={"path": settings.path, "bytes_used": bytes_used},
        )

    return web.Response(status=result.status, text=result.body, content_type="text/plain")


def create_app(store: StateStore, settings: ProbeSettings) -> web.Application:
    """Build the aiohttp application exposing ``GET /``.

    Args:
        store: State store to read measurements from
        settings: Path, threshold and override to judge against

    Returns:
        Configured aiohttp application
    """
    app = web.Application()
    app[STATE_STORE_KEY] = store
    app[PROBE_SETTINGS_KEY] = settings
    _ = app.router.add_get("/", handle_status)
    return app


async def serve(app: web.Application, *, host: str | None, port: int) -> None:
    """Serve ``app`` on ``host:port`` until cancelled.

    A bind failure propagates as OSError.
    """
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    try:
        site = web.TCPSite(runner, host=host, port=port)
        await site.start()
        logger.info(
            "HTTP endpoint listening",
            extra={"host": host or "*", "port": port},
        )
        _ = await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        logger.info("HTTP endpoint stopped")
