"""
Processed-source marker log.

An append-only text file listing sources (file names, or bucket/key of a
snapshot object) that were ingested completely. A source is checked before
processing and appended only after the whole source succeeded.

The log is not transactional with the database. If the process dies after
the rows were written but before the marker was appended, the source is
simply processed again; review deduplication absorbs the replay.
"""

import logging
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


class ProcessedSourceTracker:
    """Reads and appends the marker log at ``path``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def is_processed(self, source_id: str) -> bool:
        """Return True if ``source_id`` appears as a full line in the log."""
        if not self.path.exists():
            return False

        with self.path.open('r', encoding='utf-8') as handle:
            return any(line.strip() == source_id for line in handle)

    def mark_processed(self, source_id: str) -> None:
        """
        Append ``source_id`` to the log.

        Raises:
            ValueError: If the identifier is empty or spans several lines
            OSError: If the log cannot be written
        """
        if not source_id or '\n' in source_id:
            raise ValueError(f"Invalid source identifier: {source_id!r}")

        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)

        with self.path.open('a', encoding='utf-8') as handle:
            handle.write(source_id + '\n')

        logger.info(
            "Marked source as processed",
            extra={'source_id': source_id, 'marker_log': str(self.path)}
        )
