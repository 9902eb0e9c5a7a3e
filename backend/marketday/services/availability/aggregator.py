from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from marketday.services.availability.calculator import ProcessedMarketAvailability, compute_market_availability
from marketday.services.dto import MarketRecord, as_utc

CLOSING_SOON_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class ListingAvailability:
    is_accepting_orders: bool
    markets: tuple[ProcessedMarketAvailability, ...] = field(default_factory=tuple)
    closing_soon: bool = False
    hours_until_cutoff: float | None = None
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "is_accepting_orders": self.is_accepting_orders,
            "closing_soon": self.closing_soon,
            "hours_until_cutoff": self.hours_until_cutoff,
            "reason": self.reason,
            "markets": [m.to_dict() for m in self.markets],
        }


def _sort_key(item: ProcessedMarketAvailability):
    return (not item.is_accepting, (item.market_name or "").casefold())


def aggregate_market_availability(
    markets: Iterable[MarketRecord],
    now: datetime,
    *,
    default_cutoff_hours: dict | None = None,
) -> ListingAvailability:
    processed = [
        m
        for m in (compute_market_availability(market, now, default_cutoff_hours=default_cutoff_hours) for market in markets)
        if m is not None
    ]
    processed.sort(key=_sort_key)

    accepting = [m for m in processed if m.is_accepting]
    if not accepting:
        return ListingAvailability(
            is_accepting_orders=False,
            markets=tuple(processed),
            reason="No markets are currently accepting orders" if processed else "Listing has no active pickup markets",
        )

    now_utc = as_utc(now)
    earliest_cutoff = min(m.cutoff_at for m in accepting)
    remaining = earliest_cutoff - now_utc
    return ListingAvailability(
        is_accepting_orders=True,
        markets=tuple(processed),
        closing_soon=remaining <= CLOSING_SOON_WINDOW,
        hours_until_cutoff=round(remaining.total_seconds() / 3600.0, 1),
    )
