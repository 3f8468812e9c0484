"""
Ingestion pipeline

Wires the components together:

    source lines -> parse_line -> WorkerPool -> ReviewIngestor.process
                                               (resolve -> write -> aggregate)

`ReviewIngestor.process` returns an explicit RecordOutcome for every record;
expected failures (resolution conflicts, backend errors) never escape it.
`ingest_lines` runs a stream of lines through the pool and waits for the
join barrier. `ingest_source` adds the processed-source marker check for
bounded sources such as files.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

from .aggregates import AggregateMaintainer
from .db_operations import DatabaseError
from .dispatcher import PoolClosedError, WorkerPool
from .models import Record, RecordOutcome, WriteOutcome
from .parser import RecordValidationError, parse_line
from .resolver import EntityResolutionError, EntityResolver
from .tracker import ProcessedSourceTracker
from .writer import ReviewWriter

logger = logging.getLogger(__name__)


@dataclass
class IngestStats:
    """Counters for one ingestion run."""

    read: int = 0
    rejected: int = 0
    inserted: int = 0
    duplicate: int = 0
    failed: int = 0
    discarded: int = 0
    drained: bool = True
    cancelled: bool = False
    skipped: bool = False

    @property
    def succeeded(self) -> bool:
        """True when every accepted record finished without a failure."""
        return self.drained and not self.cancelled and self.failed == 0

    def as_dict(self) -> dict[str, Union[int, bool]]:
        return {
            'read': self.read,
            'rejected': self.rejected,
            'inserted': self.inserted,
            'duplicate': self.duplicate,
            'failed': self.failed,
            'discarded': self.discarded,
            'drained': self.drained,
            'cancelled': self.cancelled,
            'skipped': self.skipped,
        }


class ReviewIngestor:
    """Per-record processing shared by every source."""

    def __init__(self, db):
        self.db = db
        self.resolver = EntityResolver(db)
        self.aggregates = AggregateMaintainer(db)
        self.writer = ReviewWriter(db, self.aggregates)

    def process(self, record: Record) -> RecordOutcome:
        """
        Resolve, write and aggregate one record.

        Args:
            record: Parsed review record

        Returns:
            RecordOutcome.INSERTED for a new review, RecordOutcome.DUPLICATE
            when the business key was already stored, RecordOutcome.FAILED
            when the backend or entity resolution failed
        """
        try:
            entities = self.resolver.resolve(record)
            if self.writer.write(record, entities) is WriteOutcome.DUPLICATE:
                return RecordOutcome.DUPLICATE
            return RecordOutcome.INSERTED

        except EntityResolutionError as e:
            logger.error(
                "Dropping record, entity resolution failed",
                extra={'hotel_review_id': record.hotel_review_id, 'error': str(e)}
            )
        except DatabaseError as e:
            logger.error(
                "Dropping record, database error",
                extra={
                    'hotel_review_id': record.hotel_review_id,
                    'hotel_external_id': record.hotel_external_id,
                    'error': str(e),
                }
            )
        return RecordOutcome.FAILED


def ingest_lines(
    lines: Iterable[Union[bytes, str]],
    ingestor: ReviewIngestor,
    workers: int = 8,
    queue_size: int = 1000,
    strict_dates: bool = False,
    drain_timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    on_complete: Optional[Callable[[int], None]] = None,
) -> IngestStats:
    """
    Parse lines and process the resulting records on a worker pool.

    Returns only after the pool has drained (or drain_timeout elapsed).

    Args:
        lines: Raw JL lines; malformed ones are counted as rejected
        ingestor: Per-record processor
        workers: Worker thread count
        queue_size: Bounded queue capacity
        strict_dates: Reject records whose reviewDate cannot be parsed
        drain_timeout: Upper bound in seconds for the final drain
        cancel_event: When set, stop reading and discard queued records
        on_complete: Called with the 1-based line number once a line needs no
            further work: after it was rejected, or after its record was
            inserted or found to be a duplicate. Failed and discarded records
            are never reported.

    Returns:
        IngestStats for the run
    """
    stats = IngestStats()
    started = datetime.now(timezone.utc)

    def handle(item: tuple[int, Record]) -> RecordOutcome:
        line_number, record = item
        outcome = ingestor.process(record)
        if on_complete is not None and outcome is not RecordOutcome.FAILED:
            on_complete(line_number)
        return outcome

    pool: WorkerPool[tuple[int, Record]] = WorkerPool(handle, workers=workers, queue_size=queue_size)
    pool.start()

    try:
        for line in lines:
            if cancel_event is not None and cancel_event.is_set():
                pool.cancel()
                break

            stats.read += 1
            try:
                record = parse_line(line, strict_dates=strict_dates)
            except RecordValidationError as e:
                stats.rejected += 1
                logger.warning(
                    "Rejected malformed record",
                    extra={'line_number': stats.read, 'error': str(e)}
                )
                if on_complete is not None:
                    on_complete(stats.read)
                continue

            if not _submit(pool, (stats.read, record), cancel_event):
                break
    except BaseException:
        pool.cancel()
        raise
    finally:
        if not pool.cancelled:
            pool.close()
        stats.drained = pool.join(drain_timeout)

        outcomes = pool.outcomes()
        stats.inserted = outcomes[RecordOutcome.INSERTED.value]
        stats.duplicate = outcomes[RecordOutcome.DUPLICATE.value]
        stats.failed = outcomes[RecordOutcome.FAILED.value]
        stats.discarded = pool.discarded
        stats.cancelled = pool.cancelled

    logger.info(
        "Ingestion run completed",
        extra={
            'duration_seconds': (datetime.now(timezone.utc) - started).total_seconds(),
            **stats.as_dict(),
        }
    )
    return stats


def _submit(
    pool: WorkerPool,
    item: tuple[int, Record],
    cancel_event: Optional[threading.Event],
) -> bool:
    """Enqueue with backpressure; return False once the run is cancelled."""
    while True:
        if cancel_event is not None and cancel_event.is_set():
            pool.cancel()
            return False
        try:
            pool.submit(item, timeout=0.5)
            return True
        except queue.Full:
            continue
        except PoolClosedError:
            return False


def ingest_source(
    source,
    ingestor: ReviewIngestor,
    tracker: ProcessedSourceTracker,
    force: bool = False,
    **options,
) -> IngestStats:
    """
    Ingest a bounded LineSource once.

    The source is skipped if the tracker already lists it (unless force is
    set) and marked only when the run succeeded.

    Args:
        source: LineSource with source_id and iter_lines()
        ingestor: Per-record processor
        tracker: Processed-source marker log
        force: Reprocess even if the source is already marked
        **options: Passed through to ingest_lines

    Returns:
        IngestStats (skipped=True when nothing was done)
    """
    if not force and tracker.is_processed(source.source_id):
        logger.info(
            "Skipping already ingested source",
            extra={'source_id': source.source_id}
        )
        return IngestStats(skipped=True)

    logger.info("Ingesting source", extra={'source_id': source.source_id})
    stats = ingest_lines(source.iter_lines(), ingestor, **options)

    if stats.succeeded:
        tracker.mark_processed(source.source_id)
    else:
        logger.warning(
            "Source not marked as processed, it will be retried on the next run",
            extra={'source_id': source.source_id, **stats.as_dict()}
        )
    return stats
