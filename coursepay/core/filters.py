"""Query-string filters shared by listings, statistics and reports."""
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from coursepay.core.exceptions import ValidationError


@dataclass(frozen=True)
class DateRange:
    start: datetime | None = None
    end: datetime | None = None

    def cache_filters(self) -> dict[str, str | None]:
        return {
            "startDate": self.start.isoformat() if self.start else None,
            "endDate": self.end.isoformat() if self.end else None,
        }


def parse_datetime(value: str | None, *, field: str, end_of_day: bool = False) -> datetime | None:
    """
    Accepts an ISO date or datetime. A bare date used as an upper bound covers
    the whole day. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            parsed = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date_range(start: str | None, end: str | None) -> DateRange:
    date_range = DateRange(
        start=parse_datetime(start, field="startDate"),
        end=parse_datetime(end, field="endDate", end_of_day=True),
    )
    if date_range.start and date_range.end and date_range.start > date_range.end:
        raise ValidationError("startDate must be before endDate")
    return date_range
