# pipenotify/quiet_hours.py
"""
Quiet hours: per-tenant windows during which chat delivery is deferred.

The daily window is given as local HH:MM start/end in the tenant's IANA timezone.
``start > end`` wraps midnight (22:00-06:00); ``start == end`` means no daily window.
With ``weekends_enabled`` off, Saturday and Sunday are quiet all day, and so is every
date listed in ``holidays``.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import store
from .errors import InvalidQuietHoursError

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# weekends + holidays can chain, but never for more than a couple of weeks
_MAX_STEPS = 32


@dataclass(frozen=True)
class DeferDecision:
    defer: bool
    next_allowed_at: Optional[datetime] = None
    reason: Optional[str] = None


def parse_time_of_day(value: str) -> time:
    match = _HHMM.match(str(value or "").strip())
    if not match:
        raise InvalidQuietHoursError(f"Invalid time {value!r}, use HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidQuietHoursError(f"Invalid timezone: {name!r}")


def validate_quiet_hours(tz_name: str, start_time: str, end_time: str, holidays: Iterable[str] = ()) -> None:
    load_timezone(tz_name)
    parse_time_of_day(start_time)
    parse_time_of_day(end_time)
    for day in holidays or ():
        try:
            date.fromisoformat(str(day))
        except ValueError:
            raise InvalidQuietHoursError(f"Invalid holiday date {day!r}, use YYYY-MM-DD")


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class QuietWindow:
    def __init__(self, tz_name: str, start_time: str, end_time: str,
                 weekends_enabled: bool = True, holidays: Iterable[str] = ()):
        try:
            self.tz = load_timezone(tz_name or "UTC")
        except InvalidQuietHoursError:
            logger.warning("Unknown timezone %r in quiet hours config, falling back to UTC", tz_name)
            self.tz = ZoneInfo("UTC")
        self.start = parse_time_of_day(start_time)
        self.end = parse_time_of_day(end_time)
        self.weekends_enabled = weekends_enabled
        self.holidays = {str(day) for day in holidays or ()}

    @classmethod
    def from_config(cls, config) -> "QuietWindow":
        return cls(config.timezone, config.start_time, config.end_time,
                   bool(config.weekends_enabled), config.holidays or ())

    def _day_reason(self, local: datetime) -> Optional[str]:
        if not self.weekends_enabled and local.weekday() >= 5:
            return "weekend"
        if local.date().isoformat() in self.holidays:
            return "holiday"
        return None

    def _in_daily_window(self, clock: time) -> bool:
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= clock < self.end
        return clock >= self.start or clock < self.end

    def _at(self, day: date, clock: time) -> datetime:
        return datetime.combine(day, clock, tzinfo=self.tz)

    def check(self, now_utc: datetime) -> DeferDecision:
        local = as_utc(now_utc).astimezone(self.tz)

        reason = self._day_reason(local)
        if reason is None and self._in_daily_window(local.time()):
            reason = "quiet_hours"
        if reason is None:
            return DeferDecision(defer=False)

        candidate = local
        for _ in range(_MAX_STEPS):
            if self._day_reason(candidate):
                candidate = self._at(candidate.date() + timedelta(days=1), time(0, 0))
                continue
            clock = candidate.time()
            if self._in_daily_window(clock):
                if self.start > self.end and clock >= self.start:
                    candidate = self._at(candidate.date() + timedelta(days=1), self.end)
                else:
                    candidate = self._at(candidate.date(), self.end)
                continue
            return DeferDecision(defer=True, next_allowed_at=candidate.astimezone(timezone.utc), reason=reason)

        raise InvalidQuietHoursError("Quiet hours never end for this configuration")


def evaluate_quiet_hours(config, now_utc: datetime) -> DeferDecision:
    if config is None or not config.enabled:
        return DeferDecision(defer=False)
    return QuietWindow.from_config(config).check(now_utc)


class QuietHoursGate:
    def __init__(self, session):
        self.session = session

    def should_defer_now(self, tenant_id: int, now_utc: datetime) -> DeferDecision:
        config = store.get_quiet_hours_config(self.session, tenant_id)
        decision = evaluate_quiet_hours(config, now_utc)
        if decision.defer:
            logger.info(
                "Tenant %s in quiet period (%s), next delivery at %s",
                tenant_id, decision.reason, decision.next_allowed_at.isoformat(),
            )
        return decision
