"""
Death Claim Workflow System - Utility Functions
Date arithmetic, nested-path lookup and identifier helpers
"""

import re
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

DAYS_PER_YEAR = 365


class DateTimeUtils:
    """Date and time utilities"""

    @staticmethod
    def now() -> datetime:
        """Timezone-aware current UTC time"""
        return datetime.now(timezone.utc)

    @staticmethod
    def now_iso() -> str:
        return DateTimeUtils.now().isoformat()

    @staticmethod
    def parse_date(value: Union[str, date, datetime, None]) -> Optional[datetime]:
        """Parse ISO date strings, dates and datetimes into aware UTC datetimes"""
        if value is None or value == "":
            return None

        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        elif isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
            except ValueError:
                logger.warning("Unparseable date", value=value)
                return None
        else:
            return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def years_since(value: Union[str, date, datetime, None], reference: datetime = None) -> Optional[float]:
        """Fractional years elapsed since a date, 365-day years"""
        start = DateTimeUtils.parse_date(value)
        if start is None:
            return None
        reference = reference or DateTimeUtils.now()
        return (reference - start).total_seconds() / (DAYS_PER_YEAR * 24 * 3600)

    @staticmethod
    def add_days(days: int, start: datetime = None) -> datetime:
        return (start or DateTimeUtils.now()) + timedelta(days=days)


class DataUtils:
    """Data manipulation utilities"""

    @staticmethod
    def get_nested_value(data: Any, path: str) -> Any:
        """Resolve a dot-notation path ("policy.status") against nested dicts.

        Missing keys, None intermediates and non-container values all resolve to None.
        Numeric segments index into lists.
        """
        current = data
        for key in path.split('.'):
            if current is None:
                return None
            if isinstance(current, dict):
                current = current.get(key)
            elif isinstance(current, (list, tuple)) and key.isdigit():
                index = int(key)
                current = current[index] if 0 <= index < len(current) else None
            else:
                current = getattr(current, key, None)
        return current

    @staticmethod
    def snake_case(key: str) -> str:
        """``threePointMatch`` -> ``three_point_match``; keys without a camel hump are left alone"""
        if not re.search(r'[a-z0-9][A-Z]', key):
            return key
        return re.sub(r'(?<=[a-z0-9])([A-Z])', r'_\1', key).lower()

    @staticmethod
    def snake_case_keys(data: Any) -> Any:
        """Recursively rename camelCase dict keys; an existing snake_case key wins"""
        if isinstance(data, list):
            return [DataUtils.snake_case_keys(item) for item in data]
        if not isinstance(data, dict):
            return data
        converted: Dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(key, str) and key != DataUtils.snake_case(key):
                continue
            converted[key] = DataUtils.snake_case_keys(value)
        for key, value in data.items():
            if isinstance(key, str):
                converted.setdefault(DataUtils.snake_case(key), DataUtils.snake_case_keys(value))
        return converted

    @staticmethod
    def generate_id(prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

    @staticmethod
    def normalize_label(label: Optional[str]) -> str:
        """Lower-case a classifier label and fold spaces and hyphens into underscores"""
        if not label:
            return ""
        return re.sub(r'[\s\-]+', '_', str(label).strip().lower())

    @staticmethod
    def round_half_up(value: float) -> int:
        return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
