"""Source Adapters.

Thin adapters that feed raw JL lines into the ingestor:
- FileSource: local newline-delimited file (file_adapter.py)
- StreamConsumer: Kafka consumer group (kafka_consumer.py)
- SnapshotBridge: daily S3 snapshot republished to Kafka (snapshot_bridge.py)
"""

from .base import LineSource
from .file_adapter import FileSource
from .kafka_consumer import StreamConsumer
from .snapshot_bridge import SnapshotBridge, SnapshotScheduler

__all__ = ["LineSource", "FileSource", "StreamConsumer", "SnapshotBridge", "SnapshotScheduler"]
__version__ = "0.1.0"
