"""
Aggregate Maintainer

Keeps hotel_ratings_summaries in step with newly inserted reviews. It must be
called exactly once per genuinely new review and never for a duplicate.

The increment is delegated to the backend as one atomic statement. Reading
the summary, adding in Python and writing it back would lose updates when two
workers handle reviews for the same hotel at the same time.
"""

import logging

logger = logging.getLogger(__name__)


class AggregateMaintainer:
    """Applies one accepted rating to a hotel's rolling summary."""

    def __init__(self, db):
        self.db = db

    def apply(self, hotel_id: int, rating: float, tx=None) -> None:
        """
        Add a rating to the hotel's summary.

        Creates the summary with total_reviews=1 on the hotel's first review;
        afterwards increments total_reviews and total_rating and recomputes
        average_rating, all inside the database.

        Args:
            hotel_id: Internal hotel id
            rating: Accepted rating
            tx: Open review transaction to join. Without one, the increment
                runs in a transaction of its own.

        Raises:
            DatabaseError: If the update fails
        """
        if tx is None:
            with self.db.review_transaction() as own_tx:
                own_tx.increment_ratings_summary(hotel_id, rating)
        else:
            tx.increment_ratings_summary(hotel_id, rating)
        logger.debug(
            "Ratings summary incremented",
            extra={'hotel_id': hotel_id, 'rating': rating}
        )
