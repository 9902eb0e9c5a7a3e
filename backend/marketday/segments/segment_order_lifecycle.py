from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, jsonify, request

from marketday.services.wiring import lifecycle_orchestrator
from marketday.utils.http import current_user, err_response, forbidden, role_of, unauthorized

buyer_orders_bp = Blueprint("buyer_orders_bp", __name__, url_prefix="/api/buyer/orders")
vendor_orders_bp = Blueprint("vendor_orders_bp", __name__, url_prefix="/api/vendor/orders")
orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _respond(result, status: int = 200):
    if not result.ok:
        return err_response(result)
    return jsonify({"ok": True, **result.value}), status


def _vendor_user():
    user = current_user()
    if user is None:
        return None, unauthorized()
    if role_of(user) not in ("vendor", "admin"):
        return None, forbidden("Vendor access required")
    return user, None


@buyer_orders_bp.post("/<int:item_id>/cancel")
def buyer_cancel(item_id: int):
    user = current_user()
    if user is None:
        return unauthorized()
    body = _json_body()
    result = lifecycle_orchestrator().buyer_cancel(item_id, int(user.id), str(body.get("reason") or ""))
    return _respond(result)


@buyer_orders_bp.post("/<int:item_id>/report-issue")
def report_issue(item_id: int):
    user = current_user()
    if user is None:
        return unauthorized()
    body = _json_body()
    result = lifecycle_orchestrator().report_issue(item_id, int(user.id), str(body.get("description") or ""))
    return _respond(result)


@vendor_orders_bp.post("/<int:item_id>/reject")
def vendor_reject(item_id: int):
    user, denied = _vendor_user()
    if denied is not None:
        return denied
    body = _json_body()
    result = lifecycle_orchestrator().vendor_reject(item_id, int(user.id), str(body.get("reason") or ""))
    return _respond(result)


@vendor_orders_bp.post("/<int:item_id>/resolve-issue")
def resolve_issue(item_id: int):
    user, denied = _vendor_user()
    if denied is not None:
        return denied
    body = _json_body()
    result = lifecycle_orchestrator().resolve_issue(
        item_id,
        int(user.id),
        str(body.get("action") or ""),
        body.get("notes"),
    )
    return _respond(result)


@vendor_orders_bp.post("/<int:item_id>/confirm")
def vendor_confirm(item_id: int):
    user, denied = _vendor_user()
    if denied is not None:
        return denied
    return _respond(lifecycle_orchestrator().vendor_confirm(item_id, int(user.id)))


@vendor_orders_bp.post("/<int:item_id>/ready")
def vendor_ready(item_id: int):
    user, denied = _vendor_user()
    if denied is not None:
        return denied
    return _respond(lifecycle_orchestrator().vendor_mark_ready(item_id, int(user.id)))


@vendor_orders_bp.post("/<int:item_id>/fulfill")
def vendor_fulfill(item_id: int):
    user, denied = _vendor_user()
    if denied is not None:
        return denied
    return _respond(lifecycle_orchestrator().vendor_fulfill(item_id, int(user.id)))


@orders_bp.post("/orders")
def place_order():
    user = current_user()
    if user is None:
        return unauthorized()
    body = _json_body()
    items = body.get("items")
    if not isinstance(items, list):
        items = []
    result = lifecycle_orchestrator().place_order(
        int(user.id),
        [i for i in items if isinstance(i, dict)],
        str(body.get("payment_method") or "stripe"),
    )
    if not result.ok:
        return err_response(result)
    order = asdict(result.value)
    order["created_at"] = result.value.created_at.isoformat() if result.value.created_at else None
    return jsonify({"ok": True, "order": order}), 201
