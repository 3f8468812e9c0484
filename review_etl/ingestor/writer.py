"""
Review Deduplicator & Writer

Persists at most one review per hotel_review_id even when sources deliver the
same record more than once.

The exists-check followed by the insert is not atomic on its own. Two
workers can both see "absent" and both insert; the unique constraint on
hotel_review_id rejects the second insert, and that rejection is reported
as a duplicate rather than an error.

The review row and the hotel's summary increment share one transaction. If
the increment fails the review is rolled back too, so a redelivered record
is inserted and counted again instead of being skipped as a duplicate.
"""

import logging
from typing import Optional

from .aggregates import AggregateMaintainer
from .db_operations import DuplicateKeyError
from .models import Record, ResolvedEntities, WriteOutcome

logger = logging.getLogger(__name__)


class ReviewWriter:
    """Writes reviews idempotently by business key."""

    def __init__(self, db, aggregates: Optional[AggregateMaintainer] = None):
        self.db = db
        self.aggregates = aggregates or AggregateMaintainer(db)

    def write(self, record: Record, entities: ResolvedEntities) -> WriteOutcome:
        """
        Insert the review and apply its rating unless the business key is
        already stored.

        Args:
            record: Parsed review record
            entities: Resolved dimension ids for the record

        Returns:
            WriteOutcome.INSERTED for a new row, WriteOutcome.DUPLICATE when
            the review already existed or a concurrent worker inserted it first

        Raises:
            DatabaseError: For backend failures other than the unique violation;
                neither the review nor the summary change is kept
        """
        if self.db.review_exists(record.hotel_review_id):
            logger.debug(
                "Review already stored, skipping",
                extra={'hotel_review_id': record.hotel_review_id}
            )
            return WriteOutcome.DUPLICATE

        try:
            with self.db.review_transaction() as tx:
                tx.insert_review(
                    hotel_id=entities.hotel_id,
                    platform_id=entities.platform_id,
                    reviewer_id=entities.reviewer_id,
                    hotel_review_id=record.hotel_review_id,
                    rating=record.rating,
                    title=record.title,
                    text=record.text,
                    review_date=record.review_date,
                )
                self.aggregates.apply(entities.hotel_id, record.rating, tx)
        except DuplicateKeyError:
            logger.debug(
                "Review inserted concurrently by another worker",
                extra={'hotel_review_id': record.hotel_review_id}
            )
            return WriteOutcome.DUPLICATE

        return WriteOutcome.INSERTED
