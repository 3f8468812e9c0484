"""
Ingestion settings loader.

This module centralizes reading and validating the pipeline settings from
`config/ingestion.yml`, with environment variables taking precedence over the
YAML values. The CLI, the Airflow DAG and the tests all go through
`load_settings()` so configuration handling stays consistent.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class KafkaSettings:
    """Streaming transport settings."""

    brokers: list[str] = field(default_factory=lambda: ["localhost:9092"])
    topic: str = "reviews.raw"
    consumer_group: str = "review-ingestors"
    commit_interval_ms: int = 1000
    poll_timeout_ms: int = 100
    num_partitions: int = 3
    replication_factor: int = 1


@dataclass
class SnapshotSettings:
    """Object storage settings for the daily snapshot bridge."""

    bucket: str | None = None
    prefix: str = ""
    region: str = "ap-south-1"
    batch_size: int = 50
    interval_seconds: int = 86400


@dataclass
class IngestionSettings:
    """Complete ingestion configuration."""

    database_url: str | None = None
    workers: int = 8
    queue_size: int = 1000
    marker_log: str = "processed.log"
    drain_timeout_seconds: float | None = None
    kafka: KafkaSettings = field(default_factory=KafkaSettings)
    snapshot: SnapshotSettings = field(default_factory=SnapshotSettings)

    def validate(self) -> None:
        """Raise ValueError when a tunable is out of range."""
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {self.queue_size}")
        if self.snapshot.batch_size < 1:
            raise ValueError(f"snapshot batch_size must be >= 1, got {self.snapshot.batch_size}")
        if not self.kafka.brokers:
            raise ValueError("At least one Kafka broker must be configured")


def _project_root() -> Path:
    """Return the project root path based on this file's location."""
    return Path(__file__).resolve().parent.parent.parent


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"`{name}` section must be a mapping in ingestion settings")
    return value


def _split_brokers(value: Any) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if str(part).strip()]
    raise ValueError(f"Kafka brokers must be a list or comma-separated string, got {type(value).__name__}")


def _from_mapping(raw: Mapping[str, Any]) -> IngestionSettings:
    ingestion = _section(raw, "ingestion")
    kafka_raw = _section(raw, "kafka")
    snapshot_raw = _section(raw, "snapshot")

    kafka = KafkaSettings()
    if "brokers" in kafka_raw:
        kafka.brokers = _split_brokers(kafka_raw["brokers"])
    kafka.topic = str(kafka_raw.get("topic", kafka.topic))
    kafka.consumer_group = str(kafka_raw.get("consumer_group", kafka.consumer_group))
    kafka.commit_interval_ms = int(kafka_raw.get("commit_interval_ms", kafka.commit_interval_ms))
    kafka.poll_timeout_ms = int(kafka_raw.get("poll_timeout_ms", kafka.poll_timeout_ms))
    kafka.num_partitions = int(kafka_raw.get("num_partitions", kafka.num_partitions))
    kafka.replication_factor = int(kafka_raw.get("replication_factor", kafka.replication_factor))

    snapshot = SnapshotSettings(
        bucket=snapshot_raw.get("bucket"),
        prefix=str(snapshot_raw.get("prefix", "")),
        region=str(snapshot_raw.get("region", SnapshotSettings.region)),
        batch_size=int(snapshot_raw.get("batch_size", SnapshotSettings.batch_size)),
        interval_seconds=int(snapshot_raw.get("interval_seconds", SnapshotSettings.interval_seconds)),
    )

    drain_timeout = ingestion.get("drain_timeout_seconds")
    return IngestionSettings(
        workers=int(ingestion.get("workers", IngestionSettings.workers)),
        queue_size=int(ingestion.get("queue_size", IngestionSettings.queue_size)),
        marker_log=str(ingestion.get("marker_log", IngestionSettings.marker_log)),
        drain_timeout_seconds=float(drain_timeout) if drain_timeout is not None else None,
        kafka=kafka,
        snapshot=snapshot,
    )


def _apply_env_overrides(settings: IngestionSettings, env: Mapping[str, str]) -> None:
    if env.get("DATABASE_URL"):
        settings.database_url = env["DATABASE_URL"]
    if env.get("INGEST_WORKERS"):
        settings.workers = int(env["INGEST_WORKERS"])
    if env.get("INGEST_QUEUE_SIZE"):
        settings.queue_size = int(env["INGEST_QUEUE_SIZE"])
    if env.get("PROCESSED_LOG"):
        settings.marker_log = env["PROCESSED_LOG"]
    if env.get("KAFKA_BROKERS"):
        settings.kafka.brokers = _split_brokers(env["KAFKA_BROKERS"])
    if env.get("KAFKA_TOPIC"):
        settings.kafka.topic = env["KAFKA_TOPIC"]
    if env.get("KAFKA_CONSUMER_GROUP"):
        settings.kafka.consumer_group = env["KAFKA_CONSUMER_GROUP"]
    if env.get("S3_BUCKET"):
        settings.snapshot.bucket = env["S3_BUCKET"]
    if env.get("S3_PREFIX"):
        settings.snapshot.prefix = env["S3_PREFIX"]
    if env.get("AWS_REGION"):
        settings.snapshot.region = env["AWS_REGION"]


def load_settings(
    config_path: str | None = None,
    env: Mapping[str, str] | None = None,
) -> IngestionSettings:
    """
    Load ingestion settings from YAML and the environment.

    Args:
        config_path: Optional override for the config file path. When omitted,
            the function reads `config/ingestion.yml` relative to the project
            root, and falls back to built-in defaults if that file is absent.
        env: Mapping used for overrides (defaults to `os.environ`).

    Returns:
        Validated `IngestionSettings`.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
        ValueError: If the YAML cannot be parsed or a value is invalid.
    """
    env = os.environ if env is None else env
    path = Path(config_path) if config_path else _project_root() / "config" / "ingestion.yml"

    raw_config: Mapping[str, Any] | None = None
    if path.exists():
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw_config = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            logger.error("Failed to parse ingestion settings: %s", exc)
            raise ValueError(f"Invalid YAML in ingestion settings: {exc}") from exc
    elif config_path:
        logger.error("Ingestion settings file not found: %s", path)
        raise FileNotFoundError(f"Ingestion settings file not found: {path}")
    else:
        logger.warning("No ingestion settings file at %s, using defaults", path)

    if raw_config is not None and not isinstance(raw_config, Mapping):
        raise ValueError("Ingestion settings must be a mapping at the top level")

    try:
        settings = _from_mapping(raw_config or {})
        _apply_env_overrides(settings, env)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid ingestion settings: {exc}") from exc

    settings.validate()

    logger.info(
        "Loaded ingestion settings",
        extra={
            "workers": settings.workers,
            "queue_size": settings.queue_size,
            "kafka_topic": settings.kafka.topic,
            "snapshot_bucket": settings.snapshot.bucket,
        },
    )
    return settings


__all__ = ["IngestionSettings", "KafkaSettings", "SnapshotSettings", "load_settings"]
