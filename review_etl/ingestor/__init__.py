"""
Ingestor Service

This service turns raw hotel review lines into relational rows.

Key responsibilities:
- Parse and validate JL records
- Resolve Hotel, Platform and Reviewer dimension rows
- Persist each review at most once per hotel_review_id
- Maintain the rolling per-hotel ratings summary
"""

__version__ = "0.1.0"
