"""Review-ETL Package.

This package contains the services of the hotel review ingestion pipeline:
- ingestor: Parses, deduplicates and persists review records
- source_adapters: Feeds raw JL lines from files, Kafka and S3 snapshots
- common: Settings and retry helpers shared by the services
"""

__version__ = "0.1.0"
