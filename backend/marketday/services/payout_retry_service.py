from __future__ import annotations

import logging
from datetime import datetime, timedelta

from marketday.integrations.payments.base import TransferResult
from marketday.utils.events import log_event

logger = logging.getLogger(__name__)

MAX_RETRY_AGE = timedelta(days=7)
MAX_PER_RUN = 10
ADMIN_NOTIFY_LIMIT = 5


def retry_failed_payouts(store, payments, notifier, now: datetime) -> dict:
    """Retry failed cancellation-fee transfers and give up on stale ones.

    Payouts younger than seven days are retried with the original idempotency
    key (at most ``MAX_PER_RUN`` per call). Older ones are cancelled and admins
    are told a manual payout is needed.
    """
    window_start = now - MAX_RETRY_AGE
    failed = store.list_failed_payouts()
    fresh = [p for p in failed if p.created_at >= window_start]
    expired = [p for p in failed if p.created_at < window_start]

    retried = succeeded = still_failed = skipped = 0
    for payout in fresh[:MAX_PER_RUN]:
        if not payout.destination_account_id or not payout.payouts_enabled:
            skipped += 1
            continue
        retried += 1
        try:
            result = payments.transfer_to_vendor(
                amount_cents=payout.amount_cents,
                destination_account_id=payout.destination_account_id,
                order_id=payout.order_id,
                order_item_id=payout.order_item_id,
            )
        except Exception as e:
            result = TransferResult(ok=False, error=str(e)[:200])

        if result.ok:
            store.update_payout(payout.id, status="processing", transfer_id=result.transfer_id)
            succeeded += 1
            logger.info("payout_retry_succeeded payout_id=%s transfer_id=%s", payout.id, result.transfer_id)
        else:
            store.update_payout(payout.id, status="failed", error=result.error or "transfer_failed")
            still_failed += 1
            logger.warning("payout_retry_failed payout_id=%s err=%s", payout.id, result.error)

    cancelled = 0
    for payout in expired:
        if not store.update_payout(payout.id, status="cancelled", error="retry window exceeded"):
            continue
        cancelled += 1
        log_event(
            "vendor_payout_cancelled",
            subject_type="vendor_payout",
            subject_id=payout.id,
            severity="ERROR",
            needs_reconciliation=True,
            metadata={
                "order_item_id": payout.order_item_id,
                "vendor_profile_id": payout.vendor_profile_id,
                "amount_cents": payout.amount_cents,
            },
        )
        for admin_id in store.list_admin_user_ids(ADMIN_NOTIFY_LIMIT):
            notifier.send_notification(
                admin_id,
                "payout_retry_exhausted",
                {"order_item_id": payout.order_item_id, "amount_cents": payout.amount_cents},
            )

    summary = {
        "retried": retried,
        "succeeded": succeeded,
        "still_failed": still_failed,
        "skipped": skipped,
        "cancelled": cancelled,
    }
    logger.info(
        "payout_retry_run retried=%s succeeded=%s still_failed=%s skipped=%s cancelled=%s",
        retried,
        succeeded,
        still_failed,
        skipped,
        cancelled,
    )
    return summary
