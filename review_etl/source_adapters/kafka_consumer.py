"""
Kafka stream source.

Consumes raw JL lines from the reviews topic under a consumer group.

Offsets are committed manually. Each yielded line is tracked until the
pipeline reports it finished (mark_done), and only the contiguous run of
finished offsets per partition is committed, on the configured interval and
once more before closing. Lines that were still queued, discarded on cancel
or failed are never committed, so they are delivered again after a restart
and the review writer absorbs any repeats as duplicates.
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Any, Iterator, Optional

from kafka import KafkaConsumer, OffsetAndMetadata, TopicPartition
from kafka.admin import KafkaAdminClient, NewTopic
from kafka.errors import KafkaError, TopicAlreadyExistsError

from ..common.settings import KafkaSettings

logger = logging.getLogger(__name__)


def create_consumer(settings: KafkaSettings) -> KafkaConsumer:
    """Build a group consumer for the reviews topic. Offsets are committed by StreamConsumer."""
    return KafkaConsumer(
        settings.topic,
        bootstrap_servers=settings.brokers,
        group_id=settings.consumer_group,
        enable_auto_commit=False,
        auto_offset_reset='earliest',
    )


def ensure_topic(settings: KafkaSettings, admin: Optional[Any] = None) -> bool:
    """
    Create the reviews topic if it does not exist.

    Args:
        settings: Kafka settings (brokers, topic, partitions, replication)
        admin: Optional pre-built admin client (tests)

    Returns:
        True if the topic was created, False if it already existed
    """
    owns_admin = admin is None
    if admin is None:
        admin = KafkaAdminClient(bootstrap_servers=settings.brokers)

    try:
        admin.create_topics([
            NewTopic(
                name=settings.topic,
                num_partitions=settings.num_partitions,
                replication_factor=settings.replication_factor,
            )
        ])
        logger.info("Kafka topic created", extra={'topic': settings.topic})
        return True
    except TopicAlreadyExistsError:
        logger.info("Kafka topic already exists", extra={'topic': settings.topic})
        return False
    finally:
        if owns_admin:
            admin.close()


class StreamConsumer:
    """Iterates message values from a Kafka consumer until stopped.

    The iterator is unbounded; call stop() from another thread (or a signal
    handler) to end it, then commit() and close() to leave the consumer group.

    Lines are numbered from 1 in the order they are yielded. mark_done() may
    be called from any thread; iter_lines(), commit() and close() must stay on
    the thread that drives the consumer.
    """

    def __init__(self, settings: KafkaSettings, consumer: Optional[Any] = None):
        self.settings = settings
        self._consumer = consumer if consumer is not None else create_consumer(settings)
        self._stop = threading.Event()

        self._lock = threading.Lock()
        self._yielded = 0
        self._positions: dict[int, tuple[TopicPartition, int]] = {}
        self._outstanding: dict[TopicPartition, set[int]] = defaultdict(set)
        self._next_offsets: dict[TopicPartition, int] = {}
        self._committed: dict[TopicPartition, int] = {}
        self._last_commit = time.monotonic()

    @property
    def source_id(self) -> str:
        return f"kafka:{self.settings.topic}"

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def iter_lines(self) -> Iterator[bytes]:
        logger.info(
            "Kafka consumer started",
            extra={
                'topic': self.settings.topic,
                'consumer_group': self.settings.consumer_group,
            }
        )
        while not self._stop.is_set():
            batches = self._consumer.poll(timeout_ms=self.settings.poll_timeout_ms)
            for tp, messages in batches.items():
                for message in messages:
                    with self._lock:
                        self._next_offsets[tp] = message.offset + 1
                        if message.value is None:
                            continue
                        self._yielded += 1
                        self._positions[self._yielded] = (tp, message.offset)
                        self._outstanding[tp].add(message.offset)
                    yield message.value

            if (time.monotonic() - self._last_commit) * 1000 >= self.settings.commit_interval_ms:
                self.commit()
        logger.info("Kafka consumer stopped", extra={'topic': self.settings.topic})

    def mark_done(self, line_number: int) -> None:
        """Record that the line needs no further work and its offset may be committed."""
        with self._lock:
            position = self._positions.pop(line_number, None)
            if position is not None:
                tp, offset = position
                self._outstanding[tp].discard(offset)

    def pending(self) -> int:
        """Number of yielded lines not yet marked done."""
        with self._lock:
            return len(self._positions)

    def commit(self) -> bool:
        """
        Commit, per partition, the offset after the last contiguous finished line.

        A commit failure (for example during a rebalance) is logged and not
        raised; the uncommitted lines are redelivered later.

        Returns:
            True if nothing needed committing or the commit succeeded
        """
        self._last_commit = time.monotonic()
        with self._lock:
            offsets = {}
            for tp, next_offset in self._next_offsets.items():
                outstanding = self._outstanding.get(tp)
                position = min(outstanding) if outstanding else next_offset
                if self._committed.get(tp) != position:
                    offsets[tp] = position

        if not offsets:
            return True

        try:
            self._consumer.commit({
                tp: OffsetAndMetadata(offset, '', -1) for tp, offset in offsets.items()
            })
        except KafkaError as e:
            logger.warning(
                "Offset commit failed, uncommitted records will be redelivered",
                extra={'topic': self.settings.topic, 'error': str(e)}
            )
            return False

        with self._lock:
            self._committed.update(offsets)
        logger.debug(
            "Committed offsets",
            extra={'offsets': {f"{tp.topic}-{tp.partition}": o for tp, o in offsets.items()}}
        )
        return True

    def close(self) -> None:
        """Leave the group without committing anything beyond what commit() recorded."""
        self._consumer.close(autocommit=False)
