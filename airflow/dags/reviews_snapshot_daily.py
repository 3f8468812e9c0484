"""
Reviews Snapshot Daily DAG

Republishes the day's S3 review snapshot to Kafka, where the long-running
stream consumer ingests it.

The bridge skips a snapshot already listed in the marker log, so a retried or
manually re-triggered run never republishes the same object twice.

Schedule: Daily at 02:00 UTC
"""
from datetime import datetime, timedelta

import pendulum
from airflow import DAG
from airflow.operators.python import PythonOperator


TZ = pendulum.timezone("UTC")

default_args = {
    "owner": "review-etl",
    "depends_on_past": False,
    "email_on_failure": False,
    "email_on_retry": False,
    "retries": 3,
    "retry_delay": timedelta(minutes=10),
    "retry_exponential_backoff": True,
    "max_retry_delay": timedelta(hours=1),
}


def publish_snapshot(**context):
    """Run the snapshot bridge for the DAG run's logical date."""
    from review_etl.common.settings import load_settings
    from review_etl.ingestor.tracker import ProcessedSourceTracker
    from review_etl.source_adapters.kafka_consumer import ensure_topic
    from review_etl.source_adapters.snapshot_bridge import (
        S3ObjectFetcher,
        SnapshotBridge,
        create_producer,
    )

    settings = load_settings()
    ensure_topic(settings.kafka)

    producer = create_producer(settings.kafka)
    try:
        bridge = SnapshotBridge(
            fetcher=S3ObjectFetcher(region=settings.snapshot.region),
            producer=producer,
            tracker=ProcessedSourceTracker(settings.marker_log),
            bucket=settings.snapshot.bucket,
            prefix=settings.snapshot.prefix,
            topic=settings.kafka.topic,
            batch_size=settings.snapshot.batch_size,
        )
        result = bridge.run_once(context["logical_date"].date())
    finally:
        producer.close()

    print(f"Snapshot {result.key}: published={result.published} skipped={result.skipped}")
    return {"key": result.key, "published": result.published, "skipped": result.skipped}


with DAG(
    dag_id="reviews_snapshot_daily",
    default_args=default_args,
    description="Republish the daily S3 review snapshot to Kafka",
    schedule_interval="0 2 * * *",
    start_date=datetime(2025, 4, 1, tzinfo=TZ),
    catchup=False,
    max_active_runs=1,
    tags=["reviews", "ingestion", "daily"],
) as dag:

    publish = PythonOperator(
        task_id="publish_snapshot",
        python_callable=publish_snapshot,
        doc_md="""
        **Publish S3 snapshot to Kafka**

        - Reads `s3://{bucket}/{prefix}/{YYYY-MM-DD}.jl`
        - Sends lines to the reviews topic in batches of 50
        - Marks `{bucket}/{key}` in the marker log on success
        """,
    )
