from __future__ import annotations

from flask import g, jsonify, request

from marketday.models import User
from marketday.services.result import Err
from marketday.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    sub = payload.get("sub")
    if not sub:
        return None
    try:
        uid = int(sub)
    except Exception:
        return None
    user = User.query.get(uid)
    if user is None or not user.is_active:
        return None
    g.auth_user_id = int(user.id)
    return user


def role_of(user: User | None) -> str:
    if not user:
        return "guest"
    return (getattr(user, "role", None) or "buyer").strip().lower()


def unauthorized():
    return error_response(401, "Unauthorized", "Authentication required")


def forbidden(message: str = "Forbidden"):
    return error_response(403, "Forbidden", message)


def error_response(status: int, error: str, message: str, **extra):
    payload = {"ok": False, "error": error, "message": message, "status": int(status)}
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    payload.update(extra)
    return jsonify(payload), int(status)


def err_response(err: Err):
    """Map a lifecycle ``Err`` onto the JSON error contract."""
    context = {k: v for k, v in (err.context or {}).items() if k != "forbidden"}
    extra = {"context": context} if context else {}
    return error_response(err.http_status, err.kind.value, err.message, **extra)
