"""Local JL file source."""

import logging
from pathlib import Path
from typing import Iterator, Union

from .base import LineSource

logger = logging.getLogger(__name__)


class FileSource(LineSource):
    """Reads a newline-delimited JSON file from local disk.

    The marker log identifies the file by its base name, so the same export
    dropped into a different directory is still recognised as processed.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @property
    def source_id(self) -> str:
        return self.path.name

    def iter_lines(self) -> Iterator[bytes]:
        count = 0
        with self.path.open('rb') as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line:
                    continue
                count += 1
                yield line

        logger.info(
            "Finished reading file",
            extra={'path': str(self.path), 'lines': count}
        )
