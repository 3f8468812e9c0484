"""
Entity Resolver

Idempotent get-or-create for the dimension rows a review references:
hotels (by external_id), platforms (by name) and reviewers (by the
country/review-group/room-type triple).

Resolution steps for every entity:
1. Look the row up by its natural key and return it if present
2. Otherwise insert it
3. If the insert hits the unique constraint, another worker created the
   row first: read it again by natural key
4. If that re-read still finds nothing, give up on the record

There is no in-process locking. The database's unique constraints decide
every race, so at most one row per natural key can ever exist.
"""

import logging
from typing import Callable, Optional, TypeVar

from .db_operations import DuplicateKeyError
from .models import Record, ResolvedEntities, ReviewerKey

logger = logging.getLogger(__name__)

K = TypeVar('K')


class EntityResolutionError(Exception):
    """Raised when a dimension row can be neither found nor created."""
    pass


class EntityResolver:
    """Resolves natural keys to dimension row ids against an injected backend."""

    def __init__(self, db):
        self.db = db

    def resolve_hotel(self, external_id: int, name: str) -> int:
        return self._get_or_create(
            'hotel',
            external_id,
            self.db.find_hotel_id,
            lambda key: self.db.insert_hotel(key, name),
        )

    def resolve_platform(self, name: str) -> int:
        return self._get_or_create(
            'platform',
            name,
            self.db.find_platform_id,
            self.db.insert_platform,
        )

    def resolve_reviewer(self, key: ReviewerKey) -> int:
        return self._get_or_create(
            'reviewer',
            key,
            self.db.find_reviewer_id,
            self.db.insert_reviewer,
        )

    def resolve(self, record: Record) -> ResolvedEntities:
        """
        Resolve every dimension row referenced by a record.

        Args:
            record: Parsed review record

        Returns:
            ResolvedEntities with hotel, platform and reviewer ids

        Raises:
            EntityResolutionError: If a row lost a race and cannot be re-read
            DatabaseError: If the backend fails for another reason
        """
        return ResolvedEntities(
            hotel_id=self.resolve_hotel(record.hotel_external_id, record.hotel_name),
            platform_id=self.resolve_platform(record.platform),
            reviewer_id=self.resolve_reviewer(record.reviewer),
        )

    def _get_or_create(
        self,
        entity: str,
        key: K,
        find: Callable[[K], Optional[int]],
        create: Callable[[K], int],
    ) -> int:
        existing = find(key)
        if existing is not None:
            return existing

        try:
            created = create(key)
            logger.debug(
                "Created dimension row",
                extra={'entity': entity, 'natural_key': str(key), 'id': created}
            )
            return created
        except DuplicateKeyError:
            # Lost the insert race; the winner's row is committed by now.
            logger.debug(
                "Concurrent insert detected, re-reading",
                extra={'entity': entity, 'natural_key': str(key)}
            )

        winner = find(key)
        if winner is None:
            logger.error(
                "Dimension row missing after duplicate-key conflict",
                extra={'entity': entity, 'natural_key': str(key)}
            )
            raise EntityResolutionError(
                f"Could not resolve {entity} {key!r} after duplicate-key conflict"
            )
        return winner
