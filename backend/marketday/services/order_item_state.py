from __future__ import annotations


class OrderItemStatus:
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    READY = "ready"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    # Legacy alias still present on older rows; treated like fulfilled.
    COMPLETED = "completed"

    ALLOWED = {
        PENDING: {PAID, CONFIRMED, CANCELLED},
        PAID: {CONFIRMED, CANCELLED},
        CONFIRMED: {READY, CANCELLED},
        READY: {FULFILLED, CANCELLED},
        CANCELLED: {REFUNDED},
        FULFILLED: set(),
        REFUNDED: set(),
        COMPLETED: set(),
    }

    # Statuses in which the vendor has acknowledged the order and may have
    # started preparing it. Drives the post-grace cancellation fee.
    VENDOR_CONFIRMED = frozenset({CONFIRMED, READY})

    # Buyer/vendor cancellation is refused once the item reached one of these.
    NOT_CANCELLABLE = frozenset({FULFILLED, COMPLETED, REFUNDED})


class IssueStatus:
    NEW = "new"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    CLOSED = "closed"

    OPEN = frozenset({NEW, IN_REVIEW})


def can_transition(current: str, target: str) -> bool:
    cur = (current or OrderItemStatus.PENDING).strip().lower()
    tgt = (target or "").strip().lower()
    return tgt in OrderItemStatus.ALLOWED.get(cur, set())


def vendor_has_confirmed(status: str) -> bool:
    return (status or "").strip().lower() in OrderItemStatus.VENDOR_CONFIRMED


def is_cancellable(status: str) -> bool:
    return can_transition(status, OrderItemStatus.CANCELLED)
