"""Measurement sources reporting the disk usage of a path.

Two backends implement the ``MeasurementSource`` protocol:

- ``DuMeasurementSource`` runs ``du -sbx <path>`` as an asyncio subprocess
  and parses the byte total from its output. This is the default.
- ``WalkMeasurementSource`` sums the apparent size of regular files under
  the path, staying on the path's filesystem, in a worker thread via
  ``asyncio.to_thread``. Useful where GNU du is not installed.

Both raise ``MeasurementError`` for every failure so the poller can treat
them uniformly as retryable. Bounding the call with a timeout is the
poller's job; the du backend kills its subprocess when cancelled.
"""

import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import Final

from disk_probe.types.models import MAX_BYTES

logger = logging.getLogger(__name__)

DU_COMMAND: Final[tuple[str, ...]] = ("du", "-sbx")


class MeasurementError(Exception):
    """A measurement failed; the poll should be retried after backoff."""


class MeasurementTimeoutError(MeasurementError):
    """The measurement source did not answer within the timeout."""


class MeasurementParseError(MeasurementError):
    """The measurement source produced output that is not a byte count."""


def parse_du_output(output: str) -> int:
    """Parse the byte total from ``du -sb`` output.

    du prints ``<bytes>\\t<path>``; only the first field is used.

    Args:
        output: Raw stdout of du

    Returns:
        Byte count as a non-negative integer within the unsigned 64-bit range

    Raises:
        MeasurementParseError: If the first field is missing, not a decimal
            number, or out of range

    Examples:
        >>> parse_du_output("4096\\t/mnt/storage\\n")
        4096
        >>> parse_du_output("  12345\\t/srv ")
        12345
    """
    fields = output.strip().split("\t")
    bytes_str = fields[0].strip()

    if not bytes_str:
        msg = "du produced no output"
        raise MeasurementParseError(msg)

    if not bytes_str.isdigit():
        msg = f"du output is not a byte count: {bytes_str!r}"
        raise MeasurementParseError(msg)

    value = int(bytes_str)
    if value > MAX_BYTES:
        msg = f"du byte count exceeds unsigned 64-bit range: {value}"
        raise MeasurementParseError(msg)

    return value


class DuMeasurementSource:
    """Measure disk usage with the external ``du`` tool.

    ``-s`` summarizes, ``-b`` reports apparent size in bytes and ``-x``
    stays on one filesystem. A non-zero exit status is a failure even when
    du printed a total, since the total is then incomplete.
    """

    def __init__(self, command: tuple[str, ...] = DU_COMMAND) -> None:
        self._command: tuple[str, ...] = command

    async def measure(self, path: str) -> int:
        """Run du for ``path`` and return the byte total.

        Raises:
            MeasurementError: If du cannot be started or exits non-zero
            MeasurementParseError: If du output is not a byte count
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"Could not run {self._command[0]}: {exc}"
            raise MeasurementError(msg) from exc

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Timed out or shutting down: do not leave du running
            if process.returncode is None:
                process.kill()
                _ = await process.wait()
            raise

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or "no error output"
            msg = f"{self._command[0]} exited with status {process.returncode}: {detail}"
            raise MeasurementError(msg)

        return parse_du_output(stdout.decode(errors="replace"))


def _raise_unreadable(exc: OSError) -> None:
    msg = f"Cannot read directory {exc.filename}: {exc}"
    raise MeasurementError(msg) from exc


def calculate_tree_usage_sync(root: Path) -> int:
    """Sum apparent sizes of regular files under ``root`` on its filesystem.

    Symlinks are not followed and entries on other filesystems (mount points
    below ``root``) are skipped, mirroring ``du -x``. A directory that cannot
    be listed fails the whole measurement, as du exits non-zero for it, so an
    unreadable tree is never reported as a smaller total. Files that vanish
    between listing and stat are skipped and counted in the debug summary.

    Args:
        root: Directory or file to measure

    Returns:
        Total apparent size in bytes

    Raises:
        MeasurementError: If ``root`` or any directory below it cannot be read
    """
    try:
        root_stat = root.lstat()
    except OSError as exc:
        msg = f"Cannot access {root}: {exc}"
        raise MeasurementError(msg) from exc

    if not stat.S_ISDIR(root_stat.st_mode):
        return root_stat.st_size

    root_device = root_stat.st_dev
    total_bytes = 0
    processed_files = 0
    skipped_entries = 0

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_unreadable):
        current = Path(dirpath)

        # Prune directories on other filesystems before descending
        kept: list[str] = []
        for name in dirnames:
            try:
                if (current / name).lstat().st_dev == root_device:
                    kept.append(name)
            except OSError:
                skipped_entries += 1
        dirnames[:] = kept

        for name in filenames:
            entry = current / name
            try:
                entry_stat = entry.lstat()
            except OSError:
                skipped_entries += 1
                continue

            if not stat.S_ISREG(entry_stat.st_mode) or entry_stat.st_dev != root_device:
                continue

            total_bytes += entry_stat.st_size
            processed_files += 1

    logger.debug(
        "Tree walk complete",
        extra={
            "path": str(root),
            "total_bytes": total_bytes,
            "processed_files": processed_files,
            "skipped_entries": skipped_entries,
        },
    )

    return total_bytes


class WalkMeasurementSource:
    """Measure disk usage by walking the tree in a worker thread."""

    async def measure(self, path: str) -> int:
        """Walk ``path`` off the event loop and return the byte total.

        Raises:
            MeasurementError: If the path or a directory below it cannot be read
        """
        total = await asyncio.to_thread(calculate_tree_usage_sync, Path(path))
        return min(total, MAX_BYTES)


def create_measurement_source(backend: str) -> DuMeasurementSource | WalkMeasurementSource:
    """Build the measurement source named by the ``monitoring.backend`` setting.

    Raises:
        ValueError: If the backend name is unknown
    """
    if backend == "du":
        return DuMeasurementSource()
    if backend == "walk":
        return WalkMeasurementSource()
    msg = f"Unknown measurement backend: {backend!r}"
    raise ValueError(msg)
