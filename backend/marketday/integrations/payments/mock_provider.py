from __future__ import annotations

import hashlib
import os

from marketday.integrations.payments.base import (
    PaymentsProvider,
    RefundResult,
    TransferResult,
    refund_idempotency_key,
    transfer_idempotency_key,
)


def _mock_id(prefix: str, key: str) -> str:
    return f"{prefix}_mock_{hashlib.sha1(key.encode('utf-8')).hexdigest()[:16]}"


class MockPaymentsProvider(PaymentsProvider):
    """Deterministic provider for local runs and tests.

    Ids derive from the idempotency key, so a retried call returns the same
    id. Set ``fail_refunds`` / ``fail_transfers`` (or MOCK_PAYMENTS_FORCE_FAIL=1)
    to exercise failure paths.
    """

    name = "mock"

    def __init__(self, *, fail_refunds: bool = False, fail_transfers: bool = False):
        self.fail_refunds = fail_refunds
        self.fail_transfers = fail_transfers
        self.refunds: list[dict] = []
        self.transfers: list[dict] = []

    def _force_failure(self) -> bool:
        return (os.getenv("MOCK_PAYMENTS_FORCE_FAIL") or "").strip() == "1"

    def create_refund(
        self,
        payment_reference_id: str,
        amount_cents: int | None = None,
        *,
        order_item_id: int | None = None,
    ) -> RefundResult:
        key = refund_idempotency_key(payment_reference_id, amount_cents, order_item_id)
        self.refunds.append(
            {
                "payment_reference_id": payment_reference_id,
                "amount_cents": amount_cents,
                "order_item_id": order_item_id,
                "key": key,
            }
        )
        if self.fail_refunds or self._force_failure():
            return RefundResult(ok=False, error="mock forced failure", raw={"idempotency_key": key})
        return RefundResult(
            ok=True,
            refund_id=_mock_id("re", key),
            status="succeeded",
            amount_cents=int(amount_cents or 0),
            raw={"idempotency_key": key, "provider": self.name},
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
        self.transfers.append(
            {
                "amount_cents": int(amount_cents),
                "destination_account_id": destination_account_id,
                "order_id": order_id,
                "order_item_id": order_item_id,
                "key": key,
            }
        )
        if self.fail_transfers or self._force_failure():
            return TransferResult(ok=False, error="mock forced failure", raw={"idempotency_key": key})
        return TransferResult(
            ok=True,
            transfer_id=_mock_id("tr", key),
            amount_cents=int(amount_cents),
            raw={"idempotency_key": key, "provider": self.name},
        )
