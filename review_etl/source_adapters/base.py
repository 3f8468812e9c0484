"""Line Source Base Class.

This module defines the interface that every bounded review source
implements. The ingestor only needs two things from a source: a stable
identifier for the processed-source marker log and an iterator of raw lines.
"""

from abc import ABC, abstractmethod
from typing import Iterator


class LineSource(ABC):
    """Abstract base class for sources of raw JL lines.

    Usage:
        class MySource(LineSource):
            @property
            def source_id(self) -> str:
                return "my-source-2025-01-01"

            def iter_lines(self):
                yield b'{"hotelId": 1, ...}'
    """

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Identifier written to the marker log once the source is ingested."""

    @abstractmethod
    def iter_lines(self) -> Iterator[bytes]:
        """Yield raw lines, one JSON document each, without trailing newlines.

        Raises:
            OSError: If the underlying source cannot be read
        """

    def __repr__(self) -> str:
        """String representation of the source."""
        return f"{self.__class__.__name__}(source_id='{self.source_id}')"
