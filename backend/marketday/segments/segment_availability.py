from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from marketday.services.availability.listing_availability import get_listing_availability, validate_cart
from marketday.services.marketplace_store import MarketplaceStore
from marketday.utils.http import err_response, error_response

availability_bp = Blueprint("availability_bp", __name__, url_prefix="/api")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@availability_bp.get("/listings/<int:listing_id>/availability")
def listing_availability(listing_id: int):
    result = get_listing_availability(
        MarketplaceStore(),
        listing_id,
        _now(),
        default_cutoff_hours=current_app.config.get("DEFAULT_CUTOFF_HOURS"),
    )
    if not result.ok:
        return err_response(result)
    return jsonify({"ok": True, "listing_id": listing_id, **result.value.to_dict()})


@availability_bp.get("/listings/<int:listing_id>/markets")
def listing_markets(listing_id: int):
    result = get_listing_availability(
        MarketplaceStore(),
        listing_id,
        _now(),
        default_cutoff_hours=current_app.config.get("DEFAULT_CUTOFF_HOURS"),
    )
    if not result.ok:
        return err_response(result)
    availability = result.value
    return jsonify(
        {
            "ok": True,
            "listing_id": listing_id,
            "is_accepting_orders": availability.is_accepting_orders,
            "markets": [m.to_dict() for m in availability.markets],
        }
    )


@availability_bp.post("/cart/validate")
def cart_validate():
    body = request.get_json(silent=True) or {}
    items = body.get("items") if isinstance(body, dict) else None
    if not isinstance(items, list) or not items:
        return error_response(400, "validation", "items required")
    summary = validate_cart(
        MarketplaceStore(),
        [i for i in items if isinstance(i, dict)],
        _now(),
        default_cutoff_hours=current_app.config.get("DEFAULT_CUTOFF_HOURS"),
    )
    return jsonify({"ok": True, **summary})
