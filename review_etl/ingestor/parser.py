"""
Review Record Parsing and Validation

This module decodes one raw JL line into a canonical `Record`. A line that
cannot be decoded, or that lacks a required field, is rejected on its own:
the caller logs it and moves on to the next line.

Key Responsibilities:
- Decode JSON bytes/text into a dictionary
- Accept numeric fields encoded either as JSON numbers or numeric strings
- Trim optional text fields and default them to empty strings
- Parse RFC 3339 review dates, keeping the record when the date is unusable
"""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .models import Record, ReviewerKey

logger = logging.getLogger(__name__)

BIGINT_MIN = -2 ** 63
BIGINT_MAX = 2 ** 63 - 1


class RecordValidationError(Exception):
    """Raised when a JL line cannot be turned into a Record."""
    pass


def parse_line(line: Union[bytes, str], strict_dates: bool = False) -> Record:
    """
    Parse and validate one JL line.

    Expected shape:
        {
            "hotelId": 10984,
            "platform": "Agoda",
            "hotelName": "Oscar Saigon Hotel",
            "comment": {
                "hotelReviewId": 948353737,
                "rating": 6.4,
                "reviewTitle": "...",
                "reviewComments": "...",
                "reviewDate": "2025-04-10T05:37:00+07:00",
                "reviewerInfo": {
                    "countryName": "India",
                    "reviewGroupName": "Solo traveler",
                    "roomTypeName": "Premier Room"
                }
            }
        }

    Args:
        line: Raw line as read from the source (bytes or text)
        strict_dates: If True, an unparsable reviewDate rejects the record.
                      By default the record is kept with review_date=None.

    Returns:
        Validated Record

    Raises:
        RecordValidationError: If the line is not a JSON object, a required
            field is missing, or a required field has the wrong type
    """
    try:
        raw = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise RecordValidationError(f"Invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise RecordValidationError(f"Expected a JSON object, got {type(raw).__name__}")

    hotel_external_id = _parse_int(raw.get('hotelId'), 'hotelId')
    platform = _require_string(raw.get('platform'), 'platform', allow_empty=False)
    hotel_name = _require_string(raw.get('hotelName'), 'hotelName', allow_empty=True)

    comment = raw.get('comment')
    if not isinstance(comment, dict):
        raise RecordValidationError("comment is required and must be an object")

    hotel_review_id = _parse_int(comment.get('hotelReviewId'), 'comment.hotelReviewId')
    rating = _parse_float(comment.get('rating'), 'comment.rating')

    reviewer_info = comment.get('reviewerInfo') or {}
    if not isinstance(reviewer_info, dict):
        raise RecordValidationError("comment.reviewerInfo must be an object")

    review_date = _parse_review_date(comment.get('reviewDate'), hotel_review_id)
    if review_date is None and strict_dates:
        raise RecordValidationError(
            f"comment.reviewDate is missing or not RFC 3339: {comment.get('reviewDate')!r}"
        )

    return Record(
        hotel_external_id=hotel_external_id,
        hotel_name=hotel_name,
        platform=platform,
        hotel_review_id=hotel_review_id,
        rating=rating,
        title=_safe_string(comment.get('reviewTitle')),
        text=_safe_string(comment.get('reviewComments')),
        review_date=review_date,
        reviewer=ReviewerKey(
            country_name=_safe_string(reviewer_info.get('countryName')),
            review_group_name=_safe_string(reviewer_info.get('reviewGroupName')),
            room_type_name=_safe_string(reviewer_info.get('roomTypeName')),
        ),
    )


def _parse_int(value: Any, field_name: str) -> int:
    """
    Parse a required integer field that is stored as a BIGINT.

    Accepts ints, integral floats (JSON numbers such as 12.0) and numeric
    strings. Booleans are rejected even though they subclass int, and so are
    values outside the signed 64-bit range.
    """
    parsed = _coerce_int(value, field_name)
    if not BIGINT_MIN <= parsed <= BIGINT_MAX:
        raise RecordValidationError(f"{field_name} is out of range: {value!r}")
    return parsed


def _coerce_int(value: Any, field_name: str) -> int:
    if value is None:
        raise RecordValidationError(f"{field_name} is required")

    if isinstance(value, bool):
        raise RecordValidationError(f"{field_name} must be a number, got bool")

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not value.is_integer():
            raise RecordValidationError(f"{field_name} must be an integer, got {value}")
        return int(value)

    if isinstance(value, str):
        cleaned = value.strip()
        try:
            return int(cleaned)
        except ValueError:
            pass
        try:
            as_float = float(cleaned)
        except ValueError:
            raise RecordValidationError(f"{field_name} is not numeric: {value!r}")
        if not as_float.is_integer():
            raise RecordValidationError(f"{field_name} must be an integer, got {value!r}")
        return int(as_float)

    raise RecordValidationError(
        f"{field_name} must be a number or numeric string, got {type(value).__name__}"
    )


def _parse_float(value: Any, field_name: str) -> float:
    """Parse a required finite float field (number or numeric string)."""
    if value is None:
        raise RecordValidationError(f"{field_name} is required")

    if isinstance(value, bool):
        raise RecordValidationError(f"{field_name} must be a number, got bool")

    if isinstance(value, (int, float)):
        parsed = float(value)
    elif isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            raise RecordValidationError(f"{field_name} is not numeric: {value!r}")
    else:
        raise RecordValidationError(
            f"{field_name} must be a number or numeric string, got {type(value).__name__}"
        )

    if not math.isfinite(parsed):
        raise RecordValidationError(f"{field_name} must be finite, got {value!r}")
    return parsed


def _require_string(value: Any, field_name: str, allow_empty: bool) -> str:
    if not isinstance(value, str):
        raise RecordValidationError(
            f"{field_name} is required and must be a string, got {type(value).__name__}"
        )
    stripped = value.strip()
    if not stripped and not allow_empty:
        raise RecordValidationError(f"{field_name} must be a non-empty string")
    return stripped


def _parse_review_date(value: Any, hotel_review_id: int) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp.

    Returns None (and logs a warning) for missing or unparsable values.
    Naive timestamps are assumed to be UTC.
    """
    if value is None or value == '':
        logger.warning(
            "Review has no reviewDate",
            extra={'hotel_review_id': hotel_review_id}
        )
        return None

    if not isinstance(value, str):
        logger.warning(
            "Unsupported reviewDate type",
            extra={'hotel_review_id': hotel_review_id, 'type': type(value).__name__}
        )
        return None

    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        logger.warning(
            "Failed to parse reviewDate",
            extra={'hotel_review_id': hotel_review_id, 'value': value}
        )
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _safe_string(value: Any) -> str:
    """Convert an optional scalar to a trimmed string ('' for None)."""
    if value is None:
        return ''
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()
