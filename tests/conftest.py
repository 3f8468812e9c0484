"""
Pytest configuration and shared fixtures

This file contains test fixtures that can be used across all tests.
Fixtures are reusable components that set up test preconditions.

Learn more: https://docs.pytest.org/en/stable/fixture.html
"""

import json
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

import pytest

from review_etl.ingestor.db_operations import DatabaseError, DuplicateKeyError
from review_etl.ingestor.models import ReviewerKey


class StubReviewDB:
    """
    In-memory stand-in for IngestorDB.

    Each method is atomic (guarded by one lock), like a single SQL statement,
    and inserts enforce the same unique constraints as db/schema.sql. A
    find-then-insert sequence is NOT atomic, so concurrent callers race
    exactly as they would against PostgreSQL. review_transaction() holds the
    lock for the whole block and restores reviews and summaries if the block
    raises, like a rolled-back transaction.

    Fault injection:
        lookup_delay: seconds slept after a lookup read its result (widens race windows)
        fail_hotel_ids: hotel external ids whose lookups raise DatabaseError
        fail_summary_updates: raise DatabaseError from increment_ratings_summary
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._next_id = 0
        self.hotels: dict[int, dict[str, Any]] = {}
        self.platforms: dict[str, int] = {}
        self.reviewers: dict[ReviewerKey, int] = {}
        self.reviews: dict[int, dict[str, Any]] = {}
        self.summaries: dict[int, dict[str, Any]] = {}
        self.insert_attempts: dict[str, int] = {'hotel': 0, 'platform': 0, 'reviewer': 0, 'review': 0}
        self.lookup_delay = 0.0
        self.fail_hotel_ids: set[int] = set()
        self.fail_summary_updates = False

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _pause(self) -> None:
        if self.lookup_delay:
            time.sleep(self.lookup_delay)

    def find_hotel_id(self, external_id: int) -> Optional[int]:
        if external_id in self.fail_hotel_ids:
            raise DatabaseError(f"connection reset while reading hotel {external_id}")
        with self._lock:
            row = self.hotels.get(external_id)
        self._pause()
        return row['id'] if row else None

    def insert_hotel(self, external_id: int, name: str) -> int:
        with self._lock:
            self.insert_attempts['hotel'] += 1
            if external_id in self.hotels:
                raise DuplicateKeyError(f"hotels.external_id={external_id}")
            hotel_id = self._new_id()
            self.hotels[external_id] = {'id': hotel_id, 'name': name}
            return hotel_id

    def find_platform_id(self, name: str) -> Optional[int]:
        with self._lock:
            found = self.platforms.get(name)
        self._pause()
        return found

    def insert_platform(self, name: str) -> int:
        with self._lock:
            self.insert_attempts['platform'] += 1
            if name in self.platforms:
                raise DuplicateKeyError(f"platforms.name={name}")
            self.platforms[name] = self._new_id()
            return self.platforms[name]

    def find_reviewer_id(self, key: ReviewerKey) -> Optional[int]:
        with self._lock:
            found = self.reviewers.get(key)
        self._pause()
        return found

    def insert_reviewer(self, key: ReviewerKey) -> int:
        with self._lock:
            self.insert_attempts['reviewer'] += 1
            if key in self.reviewers:
                raise DuplicateKeyError(f"reviewers={key}")
            self.reviewers[key] = self._new_id()
            return self.reviewers[key]

    def review_exists(self, hotel_review_id: int) -> bool:
        with self._lock:
            found = hotel_review_id in self.reviews
        self._pause()
        return found

    def insert_review(self, **row: Any) -> int:
        with self._lock:
            self.insert_attempts['review'] += 1
            if row['hotel_review_id'] in self.reviews:
                raise DuplicateKeyError(f"reviews.hotel_review_id={row['hotel_review_id']}")
            row['id'] = self._new_id()
            self.reviews[row['hotel_review_id']] = row
            return row['id']

    def increment_ratings_summary(self, hotel_id: int, rating: float) -> None:
        if self.fail_summary_updates:
            raise DatabaseError("summary update failed")
        with self._lock:
            summary = self.summaries.setdefault(
                hotel_id, {'total_reviews': 0, 'total_rating': 0.0, 'average_rating': 0.0}
            )
            summary['total_reviews'] += 1
            summary['total_rating'] += rating
            summary['average_rating'] = summary['total_rating'] / summary['total_reviews']

    @contextmanager
    def review_transaction(self):
        with self._lock:
            reviews = dict(self.reviews)
            summaries = {k: dict(v) for k, v in self.summaries.items()}
            try:
                yield self
            except BaseException:
                self.reviews = reviews
                self.summaries = summaries
                raise

    # Helpers for assertions

    def hotel_id_for(self, external_id: int) -> int:
        return self.hotels[external_id]['id']

    def summary_for(self, external_id: int) -> dict[str, Any]:
        return self.summaries[self.hotel_id_for(external_id)]

    def review_count_for(self, external_id: int) -> int:
        hotel_id = self.hotel_id_for(external_id)
        return sum(1 for row in self.reviews.values() if row['hotel_id'] == hotel_id)


@pytest.fixture(scope="session")
def database_url() -> Optional[str]:
    """
    Provide a database URL for integration tests.

    Only a dedicated test database is ever used; returns None when
    TEST_DATABASE_URL is not set so integration tests can skip.
    """
    return os.getenv("TEST_DATABASE_URL")


@pytest.fixture(scope="function")
def review_db() -> StubReviewDB:
    """Fresh in-memory backend for each test."""
    return StubReviewDB()


@pytest.fixture(scope="function")
def sample_review() -> dict:
    """
    Provide a sample JL review payload.

    Scope: function (created fresh for each test)
    """
    return {
        "hotelId": 10984,
        "platform": "Agoda",
        "hotelName": "Oscar Saigon Hotel",
        "comment": {
            "hotelReviewId": 948353737,
            "rating": 6.4,
            "reviewTitle": "Good location",
            "reviewComments": "Walking distance to Ben Thanh market.",
            "reviewDate": "2025-04-10T05:37:00+07:00",
            "reviewerInfo": {
                "countryName": "India",
                "reviewGroupName": "Solo traveler",
                "roomTypeName": "Premier Room",
            },
        },
    }


@pytest.fixture(scope="function")
def make_line() -> Callable[..., bytes]:
    """
    Factory building one encoded JL line.

    Example:
        line = make_line(hotel_id=1, review_id=555, rating=4.5)
    """
    def _make(
        hotel_id: Any = 1,
        review_id: Any = 555,
        rating: Any = 4.5,
        platform: str = "Agoda",
        hotel_name: Optional[str] = None,
        country: str = "India",
        group: str = "Couple",
        room: str = "Deluxe Room",
        review_date: Any = "2025-04-10T05:37:00Z",
    ) -> bytes:
        payload = {
            "hotelId": hotel_id,
            "platform": platform,
            "hotelName": hotel_name if hotel_name is not None else f"Hotel {hotel_id}",
            "comment": {
                "hotelReviewId": review_id,
                "rating": rating,
                "reviewTitle": "Title",
                "reviewComments": "Text",
                "reviewDate": review_date,
                "reviewerInfo": {
                    "countryName": country,
                    "reviewGroupName": group,
                    "roomTypeName": room,
                },
            },
        }
        return json.dumps(payload).encode("utf-8")

    return _make


# Mark tests based on their type for selective running
def pytest_configure(config):
    """
    Register custom pytest markers.

    This allows us to run specific test categories:
    - pytest -m unit        (run only unit tests)
    - pytest -m integration (run only integration tests)
    - pytest -m "not slow"  (skip slow tests)
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (isolated, fast)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>1 second)"
    )
