from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from inbox_categorizer.models import as_utc

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_distance(a: datetime, b: datetime) -> float:
    return abs((as_utc(a) - as_utc(b)).total_seconds()) / SECONDS_PER_DAY


def age_in_days(value: datetime, now: datetime) -> float:
    return max(0.0, (as_utc(now) - as_utc(value)) / timedelta(days=1))


@dataclass(frozen=True)
class DateRange:
    """Inclusive date window; either bound may be open."""
    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        if self.start is not None:
            object.__setattr__(self, "start", as_utc(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", as_utc(self.end))
        if self.start and self.end and self.start > self.end:
            raise ValueError("DateRange start must not be after end")

    def contains(self, value: datetime) -> bool:
        moment = as_utc(value)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"
