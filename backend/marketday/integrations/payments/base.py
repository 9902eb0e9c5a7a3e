from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RefundResult:
    ok: bool
    refund_id: str = ""
    status: str = ""
    amount_cents: int = 0
    error: str = ""
    raw: dict | None = None


@dataclass
class TransferResult:
    ok: bool
    transfer_id: str = ""
    amount_cents: int = 0
    error: str = ""
    raw: dict | None = None


class PaymentsProvider:
    """Money movements the order lifecycle asks of the payment processor.

    Implementations return a result object instead of raising; callers have
    already committed the local state change and only record the outcome.
    """

    name = "unknown"

    def create_refund(
        self,
        payment_reference_id: str,
        amount_cents: int | None = None,
        *,
        order_item_id: int | None = None,
    ) -> RefundResult:
        raise NotImplementedError

    def transfer_to_vendor(
        self,
        *,
        amount_cents: int,
        destination_account_id: str,
        order_id: int,
        order_item_id: int,
    ) -> TransferResult:
        raise NotImplementedError


def refund_idempotency_key(payment_reference_id: str, amount_cents: int | None, order_item_id: int | None = None) -> str:
    # Items of one order share a payment intent, so the item keeps their refunds apart.
    amount = str(int(amount_cents)) if amount_cents is not None else "full"
    if order_item_id is not None:
        return f"refund-{payment_reference_id}-{int(order_item_id)}-{amount}"
    return f"refund-{payment_reference_id}-{amount}"


def transfer_idempotency_key(order_id: int, order_item_id: int) -> str:
    return f"transfer-{order_id}-{order_item_id}"
