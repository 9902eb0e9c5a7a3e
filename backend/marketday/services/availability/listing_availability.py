from __future__ import annotations

from datetime import datetime

from marketday.services.availability.aggregator import ListingAvailability, aggregate_market_availability
from marketday.services.availability.calculator import compute_market_availability
from marketday.services.result import Ok, not_found, validation_error

NOT_PUBLISHED_REASON = "Listing is not published"


def get_listing_availability(store, listing_id: int, now: datetime, *, default_cutoff_hours: dict | None = None):
    listing = store.get_listing(listing_id)
    if listing is None:
        return not_found("Listing not found", listing_id=listing_id)
    markets = store.list_listing_markets(listing.id)
    availability = aggregate_market_availability(markets, now, default_cutoff_hours=default_cutoff_hours)
    if not listing.is_published:
        return Ok(
            ListingAvailability(
                is_accepting_orders=False,
                markets=availability.markets,
                reason=NOT_PUBLISHED_REASON,
            )
        )
    return Ok(availability)


def ensure_listing_accepting_orders(
    store,
    listing_id: int,
    market_id: int,
    now: datetime,
    *,
    default_cutoff_hours: dict | None = None,
):
    """Gate for cart and checkout. Ok carries ``(listing, market_availability)``."""
    listing = store.get_listing(listing_id)
    if listing is None:
        return not_found("Listing not found", listing_id=listing_id)
    if not listing.is_published:
        return validation_error(NOT_PUBLISHED_REASON, listing_id=listing_id)
    if not store.listing_sold_at_market(listing.id, market_id):
        return validation_error("Listing is not available at this market", listing_id=listing_id, market_id=market_id)
    market = store.get_market(market_id)
    availability = compute_market_availability(market, now, default_cutoff_hours=default_cutoff_hours) if market else None
    if availability is None:
        return validation_error("Market is not active", listing_id=listing_id, market_id=market_id)
    if not availability.is_accepting:
        return validation_error(
            "Order cutoff has passed for this market",
            listing_id=listing_id,
            market_id=market_id,
            reason=availability.reason,
        )
    return Ok((listing, availability))


def validate_cart(store, lines: list[dict], now: datetime, *, default_cutoff_hours: dict | None = None) -> dict:
    """Check every cart line against the availability gate and current stock."""
    results = []
    for line in lines:
        try:
            listing_id = int(line.get("listing_id"))
            market_id = int(line.get("market_id"))
            quantity = int(line.get("quantity", 1))
        except (TypeError, ValueError):
            results.append(
                {
                    "listing_id": line.get("listing_id"),
                    "market_id": line.get("market_id"),
                    "ok": False,
                    "error": "Invalid cart item",
                }
            )
            continue
        if quantity < 1:
            results.append(
                {"listing_id": listing_id, "market_id": market_id, "ok": False, "error": "Quantity must be at least 1"}
            )
            continue
        gate = ensure_listing_accepting_orders(
            store, listing_id, market_id, now, default_cutoff_hours=default_cutoff_hours
        )
        if not gate.ok:
            results.append({"listing_id": listing_id, "market_id": market_id, "ok": False, "error": gate.message})
            continue
        listing, availability = gate.value
        if listing.quantity is not None and listing.quantity < quantity:
            results.append(
                {
                    "listing_id": listing_id,
                    "market_id": market_id,
                    "ok": False,
                    "error": f"Only {listing.quantity} left in stock",
                }
            )
            continue
        results.append(
            {
                "listing_id": listing_id,
                "market_id": market_id,
                "ok": True,
                "cutoff_at": availability.to_dict()["cutoff_at"],
                "next_pickup_at": availability.to_dict()["next_pickup_at"],
            }
        )
    return {"valid": all(r["ok"] for r in results), "items": results}
