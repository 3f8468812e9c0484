"""Canonical record and result types shared by the ingestor components."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class ReviewerKey:
    """Composite natural key of a Reviewer row."""

    country_name: str = ""
    review_group_name: str = ""
    room_type_name: str = ""


@dataclass(frozen=True)
class Record:
    """One validated JL review record.

    Produced by the parser and consumed unchanged by every worker.
    """

    hotel_external_id: int
    hotel_name: str
    platform: str
    hotel_review_id: int  # Business key used for deduplication
    rating: float
    title: str = ""
    text: str = ""
    review_date: Optional[datetime] = None  # None when the source date was unparsable
    reviewer: ReviewerKey = ReviewerKey()


@dataclass(frozen=True)
class ResolvedEntities:
    """Database ids of the dimension rows a review references."""

    hotel_id: int
    platform_id: int
    reviewer_id: int


class WriteOutcome(str, Enum):
    """Result of persisting a review by business key."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"


class RecordOutcome(str, Enum):
    """Per-record result reported at the worker boundary."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"
