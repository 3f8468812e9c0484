"""
Ingestor Service - Main Entry Point

Command-line interface for the review ingestion pipeline. It can be called
directly from the terminal, from a container entrypoint or from Airflow.

Usage:
    python -m review_etl.ingestor.main [GLOBAL OPTIONS] COMMAND [OPTIONS]

Commands:
    file PATH          Ingest a local JL file (skipped if already processed)
    consume            Consume the Kafka reviews topic until interrupted
    snapshot           Republish a day's S3 snapshot to Kafka

Global Options:
    --config PATH      Path to ingestion.yml (default: config/ingestion.yml)
    --workers N        Worker thread count (default from settings: 8)
    --queue-size N     Bounded queue capacity (default from settings: 1000)
    --verbose          Enable debug logging

Examples:
    # Ingest a local export:
    python -m review_etl.ingestor.main file data/agoda_2025-04-10.jl

    # Run the stream consumer with 16 workers:
    python -m review_etl.ingestor.main --workers 16 consume

    # Republish yesterday's snapshot from a public bucket:
    python -m review_etl.ingestor.main snapshot --date 2025-04-09 --public

Exit Codes:
    0: Success
    1: Some records failed (the source is left unmarked for retry)
    2: Fatal error (no database, no source configured, bad settings)
    130: Interrupted
"""

import argparse
import logging
import signal
import sys
from datetime import date
from typing import Optional

from dotenv import load_dotenv
from kafka.errors import KafkaError

from ..common.settings import IngestionSettings, load_settings
from ..source_adapters.file_adapter import FileSource
from ..source_adapters.kafka_consumer import StreamConsumer, ensure_topic
from ..source_adapters.snapshot_bridge import (
    PublicUrlFetcher,
    S3ObjectFetcher,
    SnapshotBridge,
    SnapshotNotFoundError,
    SnapshotScheduler,
    create_producer,
)
from .db_operations import DatabaseError, IngestorDB
from .pipeline import IngestStats, ReviewIngestor, ingest_lines, ingest_source
from .tracker import ProcessedSourceTracker

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Ingest hotel review JL records into PostgreSQL',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--config', type=str, default=None, help='Path to ingestion.yml')
    parser.add_argument('--workers', type=int, default=None, help='Worker thread count')
    parser.add_argument('--queue-size', type=int, default=None, dest='queue_size',
                        help='Bounded queue capacity')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    file_parser = subparsers.add_parser('file', help='Ingest a local JL file')
    file_parser.add_argument('path', type=str, help='Path to the .jl file')
    file_parser.add_argument('--force', action='store_true',
                             help='Reprocess even if the marker log lists the file')
    file_parser.add_argument('--strict-dates', action='store_true', dest='strict_dates',
                             help='Reject records whose reviewDate cannot be parsed')

    consume_parser = subparsers.add_parser('consume', help='Consume the Kafka reviews topic')
    consume_parser.add_argument('--strict-dates', action='store_true', dest='strict_dates',
                                help='Reject records whose reviewDate cannot be parsed')

    snapshot_parser = subparsers.add_parser('snapshot', help='Republish an S3 snapshot to Kafka')
    snapshot_parser.add_argument('--date', type=date.fromisoformat, default=None,
                                 help='Snapshot day (YYYY-MM-DD, default: today UTC)')
    snapshot_parser.add_argument('--public', action='store_true',
                                 help='Fetch over public HTTPS instead of authenticated S3')
    snapshot_parser.add_argument('--schedule', action='store_true',
                                 help='Keep running and republish on the configured interval')

    return parser.parse_args(argv)


def _apply_overrides(settings: IngestionSettings, args: argparse.Namespace) -> None:
    if args.workers is not None:
        settings.workers = args.workers
    if args.queue_size is not None:
        settings.queue_size = args.queue_size
    settings.validate()


def _exit_code(stats: IngestStats) -> int:
    if stats.skipped:
        return 0
    if stats.failed > 0 or not stats.drained:
        logger.warning(
            f"Completed with errors: {stats.failed} failed, drained={stats.drained}"
        )
        return 1
    return 0


def _connect(settings: IngestionSettings) -> IngestorDB:
    logger.info("Connecting to database")
    return IngestorDB(settings.database_url, max_connections=settings.workers)


def run_file(settings: IngestionSettings, args: argparse.Namespace) -> int:
    source = FileSource(args.path)
    if not source.path.is_file():
        logger.error(f"Input file not found: {source.path}")
        return 2

    db = _connect(settings)
    try:
        stats = ingest_source(
            source,
            ReviewIngestor(db),
            ProcessedSourceTracker(settings.marker_log),
            force=args.force,
            workers=settings.workers,
            queue_size=settings.queue_size,
            strict_dates=args.strict_dates,
            drain_timeout=settings.drain_timeout_seconds,
        )
    finally:
        db.close()
    return _exit_code(stats)


def run_consume(settings: IngestionSettings, args: argparse.Namespace) -> int:
    db = _connect(settings)
    consumer = StreamConsumer(settings.kafka)

    def _handle_sigterm(signum, frame):
        logger.info("SIGTERM received, stopping consumer")
        consumer.stop()

    signal.signal(signal.SIGTERM, _handle_sigterm)
    try:
        stats = ingest_lines(
            consumer.iter_lines(),
            ReviewIngestor(db),
            workers=settings.workers,
            queue_size=settings.queue_size,
            strict_dates=args.strict_dates,
            drain_timeout=settings.drain_timeout_seconds,
            on_complete=consumer.mark_done,
        )
    finally:
        # Only finished lines are committed; anything still queued is redelivered
        consumer.commit()
        if consumer.pending():
            logger.warning(
                "Stopping with unfinished records, they will be redelivered",
                extra={'pending': consumer.pending()}
            )
        consumer.close()
        db.close()
    return _exit_code(stats)


def run_snapshot(settings: IngestionSettings, args: argparse.Namespace) -> int:
    if not settings.snapshot.bucket:
        logger.error("S3_BUCKET must be set to run the snapshot bridge")
        return 2

    try:
        ensure_topic(settings.kafka)
    except KafkaError as e:
        logger.warning(f"Topic creation failed, continuing: {e}")

    if args.public:
        fetcher = PublicUrlFetcher(region=settings.snapshot.region)
    else:
        fetcher = S3ObjectFetcher(region=settings.snapshot.region)

    producer = create_producer(settings.kafka)
    bridge = SnapshotBridge(
        fetcher=fetcher,
        producer=producer,
        tracker=ProcessedSourceTracker(settings.marker_log),
        bucket=settings.snapshot.bucket,
        prefix=settings.snapshot.prefix,
        topic=settings.kafka.topic,
        batch_size=settings.snapshot.batch_size,
    )

    try:
        if not args.schedule:
            result = bridge.run_once(args.date)
            logger.info(
                "Snapshot bridge finished",
                extra={'key': result.key, 'published': result.published, 'skipped': result.skipped}
            )
            return 0

        scheduler = SnapshotScheduler(bridge, interval_seconds=settings.snapshot.interval_seconds)
        scheduler.start()
        try:
            while not scheduler.join(timeout=1.0):
                pass
        finally:
            scheduler.stop()
            scheduler.join()
        return 0

    except SnapshotNotFoundError as e:
        logger.error(f"Snapshot not found: {e}")
        return 1
    finally:
        producer.close()


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the ingestor service.

    Returns:
        Exit code (0 = success, 1 = partial failure, 2 = fatal error)
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        settings = load_settings(args.config)
        _apply_overrides(settings, args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if args.command in ('file', 'consume') and not settings.database_url:
        logger.error("DATABASE_URL environment variable must be set")
        return 2

    commands = {
        'file': run_file,
        'consume': run_consume,
        'snapshot': run_snapshot,
    }

    try:
        return commands[args.command](settings, args)

    except DatabaseError as e:
        logger.error(f"Database error: {e}")
        return 2

    except FileNotFoundError as e:
        logger.error(f"Source not found: {e}")
        return 2

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130

    except Exception as e:
        logger.error(
            "Unexpected fatal error",
            extra={
                'error': str(e),
                'error_type': type(e).__name__,
            },
            exc_info=True
        )
        return 2


if __name__ == '__main__':
    sys.exit(main())
