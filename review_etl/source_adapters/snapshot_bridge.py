"""
S3 Snapshot Bridge

Every day the upstream scraper drops a JL snapshot at
`s3://{bucket}/{prefix}/{YYYY-MM-DD}.jl`. The bridge streams that object line
by line and republishes each line to the reviews Kafka topic in bounded
batches, where the stream consumer picks it up like any other message.

The processed-source marker log is keyed by `{bucket}/{key}` so the same
day's object is not republished twice. A crash mid-object leaves no marker;
the next run republishes the whole object and review deduplication absorbs
the repeats.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterator, Optional

import boto3
import requests
from botocore.exceptions import ClientError, EndpointConnectionError
from kafka import KafkaProducer

from ..common.retry import retry_transport_call
from ..common.settings import KafkaSettings
from ..ingestor.tracker import ProcessedSourceTracker

logger = logging.getLogger(__name__)


class SnapshotNotFoundError(Exception):
    """Raised when the snapshot object for the requested day does not exist."""
    pass


def snapshot_key(prefix: str, day: date) -> str:
    """Return the object key for a day's snapshot, e.g. 'reviews/2025-04-10.jl'."""
    prefix = prefix.strip('/')
    name = f"{day:%Y-%m-%d}.jl"
    return f"{prefix}/{name}" if prefix else name


class S3ObjectFetcher:
    """Streams objects with authenticated boto3 GetObject calls."""

    def __init__(self, client: Optional[Any] = None, region: Optional[str] = None):
        self.client = client if client is not None else boto3.client('s3', region_name=region)

    @retry_transport_call(max_retries=3, extra_exceptions=(EndpointConnectionError,))
    def _get_object(self, bucket: str, key: str) -> dict:
        try:
            return self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code in ('NoSuchKey', '404', 'NotFound'):
                raise SnapshotNotFoundError(f"s3://{bucket}/{key} does not exist") from e
            raise

    def open_lines(self, bucket: str, key: str) -> Iterator[bytes]:
        body = self._get_object(bucket, key)['Body']
        try:
            yield from body.iter_lines()
        finally:
            body.close()


class PublicUrlFetcher:
    """Streams objects from a public bucket over plain HTTPS."""

    def __init__(self, region: str, session: Optional[requests.Session] = None, timeout: float = 30.0):
        self.region = region
        self.session = session or requests.Session()
        self.timeout = timeout

    def object_url(self, bucket: str, key: str) -> str:
        return f"https://{bucket}.s3.{self.region}.amazonaws.com/{key}"

    @retry_transport_call(
        max_retries=3,
        extra_exceptions=(requests.ConnectionError, requests.Timeout),
    )
    def _get(self, url: str) -> requests.Response:
        response = self.session.get(url, stream=True, timeout=self.timeout)
        if response.status_code == 404:
            response.close()
            raise SnapshotNotFoundError(f"{url} does not exist")
        response.raise_for_status()
        return response

    def open_lines(self, bucket: str, key: str) -> Iterator[bytes]:
        url = self.object_url(bucket, key)
        logger.info("Fetching public snapshot", extra={'url': url})
        response = self._get(url)
        try:
            yield from response.iter_lines()
        finally:
            response.close()


def create_producer(settings: KafkaSettings) -> KafkaProducer:
    """Build a producer that publishes raw line bytes unchanged."""
    return KafkaProducer(
        bootstrap_servers=settings.brokers,
        acks='all',
        linger_ms=50,
    )


@dataclass
class BridgeResult:
    """Outcome of one bridge run."""

    key: str
    published: int = 0
    batches: int = 0
    skipped: bool = False


class SnapshotBridge:
    """Republishes one day's S3 snapshot to Kafka."""

    def __init__(
        self,
        fetcher,
        producer,
        tracker: ProcessedSourceTracker,
        bucket: str,
        prefix: str,
        topic: str,
        batch_size: int = 50,
        send_timeout: float = 30.0,
    ):
        if not bucket:
            raise ValueError("Snapshot bucket must be configured")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.fetcher = fetcher
        self.producer = producer
        self.tracker = tracker
        self.bucket = bucket
        self.prefix = prefix
        self.topic = topic
        self.batch_size = batch_size
        self.send_timeout = send_timeout

    def marker_for(self, key: str) -> str:
        return f"{self.bucket}/{key}"

    def run_once(self, day: Optional[date] = None) -> BridgeResult:
        """
        Publish the snapshot for ``day`` (UTC today by default).

        Returns:
            BridgeResult with the number of lines and batches published

        Raises:
            SnapshotNotFoundError: If the object does not exist
            kafka.errors.KafkaError: If a batch could not be delivered
        """
        day = day or datetime.now(timezone.utc).date()
        key = snapshot_key(self.prefix, day)
        marker = self.marker_for(key)
        result = BridgeResult(key=key)

        if self.tracker.is_processed(marker):
            logger.info("Snapshot already published", extra={'marker': marker})
            result.skipped = True
            return result

        logger.info(
            "Publishing snapshot",
            extra={'bucket': self.bucket, 'key': key, 'batch_size': self.batch_size}
        )

        batch: list[bytes] = []
        for line in self.fetcher.open_lines(self.bucket, key):
            if not line or not line.strip():
                continue
            batch.append(line)
            if len(batch) >= self.batch_size:
                self._publish(batch, result)
                batch = []

        if batch:
            self._publish(batch, result)

        self.tracker.mark_processed(marker)
        logger.info(
            "Snapshot published",
            extra={'marker': marker, 'published': result.published, 'batches': result.batches}
        )
        return result

    def _publish(self, batch: list[bytes], result: BridgeResult) -> None:
        """Send one batch and wait for every acknowledgement. Not retried here."""
        futures = [self.producer.send(self.topic, value=line) for line in batch]
        self.producer.flush(timeout=self.send_timeout)
        for future in futures:
            future.get(timeout=self.send_timeout)
        result.published += len(batch)
        result.batches += 1


class SnapshotScheduler:
    """Runs a SnapshotBridge immediately and then every ``interval_seconds``.

    Owns one background thread; stop() and join() are the shutdown points.
    """

    def __init__(self, bridge: SnapshotBridge, interval_seconds: float = 86400):
        self.bridge = bridge
        self.interval_seconds = interval_seconds
        self.runs = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("SnapshotScheduler already started")
        self._thread = threading.Thread(target=self._run, name='snapshot-scheduler', daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.bridge.run_once()
            except SnapshotNotFoundError as e:
                logger.warning("Snapshot not available yet", extra={'error': str(e)})
            except Exception as e:
                logger.error(
                    "Snapshot bridge run failed",
                    extra={'error': str(e), 'error_type': type(e).__name__},
                    exc_info=True
                )
            self.runs += 1
            self._stop.wait(self.interval_seconds)
