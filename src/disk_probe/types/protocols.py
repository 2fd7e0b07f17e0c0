"""Protocol definitions for component interfaces."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MeasurementSource(Protocol):
    """Measures how many bytes a filesystem path uses.

    Implementations raise ``MeasurementError`` (or a subclass) for any
    failure: the tool is unavailable, exits with an error, or produces
    output that is not a byte count.
    """

    async def measure(self, path: str) -> int:
        """Return total bytes used under ``path``.

        Args:
            path: Filesystem path to measure

        Returns:
            Total bytes used, in the unsigned 64-bit range
        """
        ...
