from __future__ import annotations

import logging

import stripe

from marketday.integrations.payments.base import (
    PaymentsProvider,
    RefundResult,
    TransferResult,
    refund_idempotency_key,
    transfer_idempotency_key,
)

logger = logging.getLogger(__name__)


def _field(obj, name: str, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class StripePaymentsProvider(PaymentsProvider):
    name = "stripe"

    def __init__(self, *, secret_key: str, currency: str = "usd"):
        self.secret_key = secret_key
        self.currency = currency

    def create_refund(
        self,
        payment_reference_id: str,
        amount_cents: int | None = None,
        *,
        order_item_id: int | None = None,
    ) -> RefundResult:
        params = {"payment_intent": payment_reference_id}
        if amount_cents is not None:
            params["amount"] = int(amount_cents)
        if order_item_id is not None:
            params["metadata"] = {"order_item_id": str(order_item_id)}
        key = refund_idempotency_key(payment_reference_id, amount_cents, order_item_id)
        try:
            refund = stripe.Refund.create(api_key=self.secret_key, idempotency_key=key, **params)
        except stripe.StripeError as e:
            logger.warning("stripe_refund_failed payment_intent=%s amount_cents=%s err=%s", payment_reference_id, amount_cents, e)
            return RefundResult(ok=False, error=(getattr(e, "user_message", None) or str(e))[:200])
        status = str(_field(refund, "status") or "")
        return RefundResult(
            ok=status in ("succeeded", "pending"),
            refund_id=str(_field(refund, "id") or ""),
            status=status,
            amount_cents=int(_field(refund, "amount") or 0),
            error="" if status in ("succeeded", "pending") else f"refund_status={status}",
            raw={"id": _field(refund, "id"), "status": status},
        )

    def transfer_to_vendor(
        self,
        *,
        amount_cents: int,
        destination_account_id: str,
        order_id: int,
        order_item_id: int,
    ) -> TransferResult:
        key = transfer_idempotency_key(order_id, order_item_id)
        try:
            transfer = stripe.Transfer.create(
                api_key=self.secret_key,
                idempotency_key=key,
                amount=int(amount_cents),
                currency=self.currency,
                destination=destination_account_id,
                transfer_group=f"order-{order_id}",
                metadata={"order_id": str(order_id), "order_item_id": str(order_item_id)},
            )
        except stripe.StripeError as e:
            logger.warning("stripe_transfer_failed order_item_id=%s amount_cents=%s err=%s", order_item_id, amount_cents, e)
            return TransferResult(ok=False, error=(getattr(e, "user_message", None) or str(e))[:200])
        return TransferResult(
            ok=True,
            transfer_id=str(_field(transfer, "id") or ""),
            amount_cents=int(_field(transfer, "amount") or amount_cents),
            raw={"id": _field(transfer, "id")},
        )
