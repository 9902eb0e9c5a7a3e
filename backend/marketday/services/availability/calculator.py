"""Per-market order availability.

A market accepts orders while "now" is before the cutoff of at least one
upcoming weekly pickup. Occurrences are computed as local wall-clock times in
the market's IANA zone and converted to UTC with the offset in force on the
target date, so a DST change between now and the pickup is honoured.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from marketday.services.dto import MarketRecord, ScheduleRecord, as_utc

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Chicago"

# Lead time before a pickup after which orders close. Overridable per market.
DEFAULT_CUTOFF_HOURS = {
    "traditional": 18.0,
    "private_pickup": 10.0,
}

CLOSED_REASON = "Orders closed for upcoming market"


@dataclass(frozen=True)
class ProcessedMarketAvailability:
    market_id: int
    market_name: str
    market_type: str
    address: str
    city: str
    state: str
    is_accepting: bool
    next_pickup_at: datetime | None
    cutoff_at: datetime | None
    start_time: time | None
    end_time: time | None
    cutoff_hours: float
    reason: str | None = None

    def to_dict(self) -> dict:
        def _iso(value):
            if value is None:
                return None
            return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

        def _clock(value):
            return value.strftime("%H:%M") if value is not None else None

        return {
            "market_id": self.market_id,
            "market_name": self.market_name,
            "market_type": self.market_type,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "is_accepting": self.is_accepting,
            "next_pickup_at": _iso(self.next_pickup_at),
            "cutoff_at": _iso(self.cutoff_at),
            "start_time": _clock(self.start_time),
            "end_time": _clock(self.end_time),
            "cutoff_hours": self.cutoff_hours,
            "reason": self.reason,
        }


def resolve_cutoff_hours(market: MarketRecord, defaults: dict | None = None) -> float:
    if market.cutoff_hours is not None:
        return float(market.cutoff_hours)
    table = defaults or DEFAULT_CUTOFF_HOURS
    return float(table.get(market.market_type, DEFAULT_CUTOFF_HOURS["traditional"]))


def market_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("market_timezone_unknown tz=%s fallback=%s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_day_of_week(local_now: datetime) -> int:
    """0=Sunday .. 6=Saturday."""
    return (local_now.weekday() + 1) % 7


def next_occurrence(schedule: ScheduleRecord, now: datetime, tz: ZoneInfo) -> datetime:
    """Next UTC instant at which ``schedule`` starts, strictly after ``now`` on its day."""
    local_now = as_utc(now).astimezone(tz)
    days_until = (schedule.day_of_week - local_day_of_week(local_now)) % 7
    if days_until == 0 and local_now.time() >= schedule.start_time:
        days_until = 7
    target_date = local_now.date() + timedelta(days=days_until)
    local_target = datetime.combine(target_date, schedule.start_time, tzinfo=tz)
    return local_target.astimezone(timezone.utc)


def cutoff_for(occurrence: datetime, cutoff_hours: float) -> datetime:
    return occurrence - timedelta(milliseconds=int(round(float(cutoff_hours) * 3_600_000)))


def compute_market_availability(
    market: MarketRecord,
    now: datetime,
    *,
    default_cutoff_hours: dict | None = None,
) -> ProcessedMarketAvailability | None:
    if market is None or not market.active:
        return None
    schedules = [s for s in market.schedules if s.active]
    if not schedules:
        return None

    now_utc = as_utc(now)
    tz = market_zone(market.timezone)
    cutoff_hours = resolve_cutoff_hours(market, default_cutoff_hours)

    best: tuple[datetime, datetime, ScheduleRecord] | None = None
    for schedule in schedules:
        occurrence = next_occurrence(schedule, now_utc, tz)
        cutoff = cutoff_for(occurrence, cutoff_hours)
        if now_utc >= cutoff:
            continue
        if best is None or occurrence < best[0]:
            best = (occurrence, cutoff, schedule)

    if best is None:
        return ProcessedMarketAvailability(
            market_id=market.id,
            market_name=market.name,
            market_type=market.market_type,
            address=market.address,
            city=market.city,
            state=market.state,
            is_accepting=False,
            next_pickup_at=None,
            cutoff_at=None,
            start_time=None,
            end_time=None,
            cutoff_hours=cutoff_hours,
            reason=CLOSED_REASON,
        )

    occurrence, cutoff, schedule = best
    return ProcessedMarketAvailability(
        market_id=market.id,
        market_name=market.name,
        market_type=market.market_type,
        address=market.address,
        city=market.city,
        state=market.state,
        is_accepting=True,
        next_pickup_at=occurrence,
        cutoff_at=cutoff,
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        cutoff_hours=cutoff_hours,
    )
