"""Review-ETL Test Suite.

This package contains unit and integration tests for the review ingestion
pipeline.

Test Structure:
- unit/: Isolated tests against the in-memory backend and mocked clients
- integration/: Tests against a dedicated PostgreSQL (TEST_DATABASE_URL)
"""

__version__ = "0.1.0"
