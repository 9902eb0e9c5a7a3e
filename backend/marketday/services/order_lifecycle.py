"""Order-item lifecycle: cancellation, rejection, issue handling and forward moves.

Every entry point validates before mutating and returns ``Ok``/``Err``. The
authoritative status write is a conditional UPDATE that commits before any
payment processor call, so a processor failure leaves the item cancelled with
``refund_failed`` set instead of rolling anything back. Inventory restoration
and notifications are best-effort.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from marketday.integrations.payments.base import RefundResult, TransferResult
from marketday.services.availability.listing_availability import ensure_listing_accepting_orders
from marketday.services.cancellation_policy import buyer_paid_for_item_cents, calculate_cancellation_fee
from marketday.services.order_item_state import IssueStatus, OrderItemStatus, can_transition
from marketday.services.result import Ok, auth_error, not_found, validation_error
from marketday.services.vendor_reliability import recalculate_vendor_reliability
from marketday.utils.events import log_event
from marketday.utils.money import format_usd

PAYMENT_METHODS = ("stripe", "venmo", "cashapp", "paypal", "cash")
RESOLVE_ACTIONS = ("confirm_delivery", "issue_refund")
ADMIN_NOTIFY_LIMIT = 5

MSG_FULL_REFUND = "Order cancelled. You will receive a full refund."
MSG_REFUND_ISSUE = (
    "Order cancelled. There was an issue processing your refund; our team will handle it manually."
)
MSG_EXTERNAL_PAYMENT = "Order cancelled. Refunds for {method} payments are arranged directly with the vendor."


class OrderLifecycleOrchestrator:
    def __init__(self, store, payments, notifier, *, logger=None, clock=None, default_cutoff_hours=None):
        self.store = store
        self.payments = payments
        self.notifier = notifier
        self.log = logger or logging.getLogger(__name__)
        self.clock = clock
        self.default_cutoff_hours = default_cutoff_hours

    def _now(self) -> datetime:
        if self.clock is not None:
            return self.clock()
        return datetime.now(timezone.utc)

    # -- helpers ---------------------------------------------------------------

    def _best_effort(self, label: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception:
            self.log.exception("lifecycle_best_effort_failed step=%s", label)
            try:
                self.store.rollback()
            except Exception:
                pass
            return None

    def _notify(self, user_id, template_key: str, data: dict, *, vertical: str | None):
        if user_id is None:
            return
        self._best_effort(
            f"notify:{template_key}",
            self.notifier.send_notification,
            user_id,
            template_key,
            data,
            vertical=vertical or None,
        )

    def _vendor_for_user(self, vendor_user_id: int):
        vendor = self.store.get_vendor_by_user(vendor_user_id)
        if vendor is None:
            return None, auth_error("Vendor profile not found", forbidden=True, user_id=vendor_user_id)
        return vendor, None

    @staticmethod
    def _cancel_precheck(item):
        if item.cancelled_at is not None or item.status in (OrderItemStatus.CANCELLED, OrderItemStatus.REFUNDED):
            return validation_error("Item already cancelled", order_item_id=item.id)
        if item.status in OrderItemStatus.NOT_CANCELLABLE:
            return validation_error(f"Cannot cancel an item that is {item.status}", order_item_id=item.id)
        return None

    def _payment_for(self, item):
        if item.order.payment_method != "stripe":
            return None
        return self.store.find_succeeded_payment(item.order_id)

    def _after_cancel(self, item, *, actor_type: str, actor_id, reason: str, metadata: dict):
        """Audit row, inventory restore and order roll-up; none of these undo the cancellation."""
        self._best_effort(
            "record_transition",
            self.store.record_transition,
            item,
            from_status=item.status,
            to_status=OrderItemStatus.CANCELLED,
            actor_type=actor_type,
            actor_id=actor_id,
            reason=reason,
            metadata=metadata,
        )
        if item.listing_id is not None:
            restored = self._best_effort(
                "restore_inventory", self.store.restore_inventory, item.listing_id, max(1, item.quantity)
            )
            if restored is None:
                self.log.warning(
                    "inventory_restore_failed item_id=%s listing_id=%s quantity=%s",
                    item.id,
                    item.listing_id,
                    item.quantity,
                )
        self._best_effort("cancel_order", self.store.cancel_order_if_all_items_cancelled, item.order_id)

    def _refund(self, item, payment, amount_cents: int, *, flow: str, actor_id) -> tuple[str, bool]:
        """Returns (refund_status, refund_failed)."""
        if payment is None or amount_cents <= 0:
            return "none", False
        try:
            result = self.payments.create_refund(
                payment.payment_intent_id, int(amount_cents), order_item_id=item.id
            )
        except Exception as e:
            result = RefundResult(ok=False, error=str(e)[:200])

        now = self._now()
        if result.ok:
            status = "succeeded" if result.status in ("", "succeeded") else "pending"
            self._best_effort(
                "mark_refund",
                self.store.mark_refund_result,
                item.id,
                status=status,
                reference=result.refund_id,
                now=now,
            )
            if status == "succeeded":
                self._best_effort(
                    "record_transition",
                    self.store.record_transition,
                    item,
                    from_status=OrderItemStatus.CANCELLED,
                    to_status=OrderItemStatus.REFUNDED,
                    actor_type="system",
                    reason=flow,
                    metadata={"refund_id": result.refund_id, "amount_cents": int(amount_cents)},
                )
            return status, False

        self._best_effort("mark_refund", self.store.mark_refund_result, item.id, status="failed", now=now)
        self.log.error(
            "%s_refund_failed item_id=%s amount_cents=%s err=%s", flow, item.id, amount_cents, result.error
        )
        log_event(
            "refund_failed",
            actor_user_id=actor_id,
            subject_type="order_item",
            subject_id=item.id,
            severity="ERROR",
            needs_reconciliation=True,
            metadata={
                "flow": flow,
                "order_id": item.order_id,
                "payment_intent_id": payment.payment_intent_id,
                "amount_cents": int(amount_cents),
                "error": result.error,
            },
        )
        return "failed", True

    def _transfer_fee_share(self, item, vendor, amount_cents: int) -> bool:
        """Pay the vendor's cancellation-fee share. Returns True when the transfer failed."""
        try:
            result = self.payments.transfer_to_vendor(
                amount_cents=int(amount_cents),
                destination_account_id=vendor.stripe_account_id,
                order_id=item.order_id,
                order_item_id=item.id,
            )
        except Exception as e:
            result = TransferResult(ok=False, error=str(e)[:200])

        self._best_effort(
            "record_payout",
            self.store.record_vendor_payout,
            item=item,
            amount_cents=int(amount_cents),
            status="processing" if result.ok else "failed",
            transfer_id=result.transfer_id,
            error=result.error,
        )
        if result.ok:
            return False
        self.log.error(
            "cancellation_fee_transfer_failed item_id=%s vendor_profile_id=%s amount_cents=%s err=%s",
            item.id,
            vendor.id,
            amount_cents,
            result.error,
        )
        log_event(
            "vendor_transfer_failed",
            subject_type="order_item",
            subject_id=item.id,
            severity="ERROR",
            needs_reconciliation=True,
            metadata={"vendor_profile_id": vendor.id, "amount_cents": int(amount_cents), "error": result.error},
        )
        return True

    # -- buyer -----------------------------------------------------------------

    def buyer_cancel(self, order_item_id: int, buyer_user_id: int, reason: str = ""):
        item = self.store.get_item_for_buyer(order_item_id, buyer_user_id)
        if item is None:
            return not_found("Order item not found", order_item_id=order_item_id)
        err = self._cancel_precheck(item)
        if err is not None:
            return err

        now = self._now()
        outcome = calculate_cancellation_fee(
            subtotal_cents=item.subtotal_cents,
            total_items_in_order=item.order.item_count,
            order_status=item.status,
            order_created_at=item.order.created_at,
            now=now,
        )
        payment = self._payment_for(item)
        reason = (reason or "").strip()

        won = self.store.cancel_item_if_active(
            item.id,
            cancelled_by="buyer",
            reason=reason,
            refund_amount_cents=outcome.refund_amount_cents,
            refund_pending=payment is not None and outcome.refund_amount_cents > 0,
            now=now,
        )
        if not won:
            return validation_error("Item already cancelled", order_item_id=item.id)

        self._after_cancel(item, actor_type="buyer", actor_id=buyer_user_id, reason=reason, metadata=outcome.to_dict())

        vendor = self.store.get_vendor(item.vendor_profile_id)
        buyer = self._best_effort("buyer_lookup", self.store.get_user_contact, buyer_user_id) or {}
        if vendor is not None:
            self._notify(
                vendor.user_id,
                "order_cancelled_by_buyer",
                {
                    "order_number": item.order.order_number,
                    "buyer_name": buyer.get("name"),
                    "item_title": item.listing_title,
                    "reason": reason,
                    "amount_cents": outcome.vendor_share_cents if outcome.fee_applied else None,
                },
                vertical=item.order.vertical_id,
            )

        refund_status, refund_failed = self._refund(
            item, payment, outcome.refund_amount_cents, flow="buyer_cancel", actor_id=buyer_user_id
        )

        transfer_failed = False
        if (
            outcome.fee_applied
            and outcome.vendor_share_cents > 0
            and payment is not None
            and vendor is not None
            and vendor.stripe_account_id
        ):
            transfer_failed = self._transfer_fee_share(item, vendor, outcome.vendor_share_cents)

        if refund_failed:
            message = MSG_REFUND_ISSUE
        elif item.order.payment_method != "stripe":
            message = MSG_EXTERNAL_PAYMENT.format(method=item.order.payment_method)
        elif outcome.fee_applied:
            message = (
                f"Order cancelled. A {format_usd(outcome.cancellation_fee_cents)} cancellation fee was applied "
                f"because the vendor had already confirmed; you were refunded {format_usd(outcome.refund_amount_cents)}."
            )
        else:
            message = MSG_FULL_REFUND

        self.log.info(
            "buyer_cancel item_id=%s fee_applied=%s refund_cents=%s refund_status=%s",
            item.id,
            outcome.fee_applied,
            outcome.refund_amount_cents,
            refund_status,
        )
        return Ok(
            {
                **outcome.to_dict(),
                "order_item_id": item.id,
                "refund_status": refund_status,
                "refund_failed": refund_failed,
                "transfer_failed": transfer_failed,
                "message": message,
            }
        )

    def report_issue(self, order_item_id: int, buyer_user_id: int, description: str = ""):
        item = self.store.get_item_for_buyer(order_item_id, buyer_user_id)
        if item is None:
            return not_found("Order item not found", order_item_id=order_item_id)
        if item.status not in (OrderItemStatus.READY, OrderItemStatus.FULFILLED):
            return validation_error("Cannot report issue for this item status", status=item.status)
        if item.issue_reported_at is not None or item.issue_status is not None:
            return validation_error("Issue already reported for this item", order_item_id=item.id)

        now = self._now()
        description = (description or "").strip() or "Buyer reported not receiving item"
        if not self.store.report_issue_if_none(item.id, description=description, now=now):
            return validation_error("Issue already reported for this item", order_item_id=item.id)

        vendor = self.store.get_vendor(item.vendor_profile_id)
        if vendor is not None:
            self._notify(
                vendor.user_id,
                "pickup_issue_reported",
                {"order_number": item.order.order_number, "reason": description},
                vertical=item.order.vertical_id,
            )
        self.log.warning("pickup_issue_reported item_id=%s", item.id)
        log_event(
            "order_issue_reported",
            actor_user_id=buyer_user_id,
            subject_type="order_item",
            subject_id=item.id,
            severity="WARN",
            metadata={"description": description},
        )
        return Ok(
            {
                "order_item_id": item.id,
                "issue_status": IssueStatus.NEW,
                "issue_reported_at": now.isoformat(),
                "message": "Issue reported. Platform support will review and contact you.",
            }
        )

    # -- vendor ----------------------------------------------------------------

    def vendor_reject(self, order_item_id: int, vendor_user_id: int, reason: str):
        reason = (reason or "").strip()
        if not reason:
            return validation_error("Cancellation reason is required")
        vendor, err = self._vendor_for_user(vendor_user_id)
        if err is not None:
            return err
        item = self.store.get_item_for_vendor(order_item_id, vendor.id)
        if item is None:
            return not_found("Order item not found", order_item_id=order_item_id)
        err = self._cancel_precheck(item)
        if err is not None:
            return err

        now = self._now()
        refund_amount = buyer_paid_for_item_cents(item.subtotal_cents, item.order.item_count)
        payment = self._payment_for(item)

        won = self.store.cancel_item_if_active(
            item.id,
            cancelled_by="vendor",
            reason=reason,
            refund_amount_cents=refund_amount,
            refund_pending=payment is not None,
            now=now,
        )
        if not won:
            return validation_error("Item already cancelled", order_item_id=item.id)

        self._after_cancel(
            item,
            actor_type="vendor",
            actor_id=vendor_user_id,
            reason=reason,
            metadata={"refund_amount_cents": refund_amount},
        )
        self._notify(
            item.order.buyer_user_id,
            "order_cancelled_by_vendor",
            {
                "order_number": item.order.order_number,
                "vendor_name": vendor.business_name,
                "item_title": item.listing_title,
                "reason": reason,
            },
            vertical=item.order.vertical_id,
        )

        refund_status, refund_failed = self._refund(
            item, payment, refund_amount, flow="vendor_reject", actor_id=vendor_user_id
        )

        updated = self._best_effort("vendor_counter", self.store.increment_vendor_counter, vendor.id, "cancelled")
        warning_sent = False
        if updated is not None:
            warning_sent = bool(
                self._best_effort(
                    "vendor_reliability",
                    recalculate_vendor_reliability,
                    self.store,
                    self.notifier,
                    updated,
                    now=now,
                    vertical=item.order.vertical_id,
                )
            )

        message = (
            "Order rejected. The buyer's refund could not be processed automatically and will be handled manually."
            if refund_failed
            else f"Order rejected. The buyer will be refunded {format_usd(refund_amount)}."
        )
        return Ok(
            {
                "order_item_id": item.id,
                "refund_amount_cents": refund_amount,
                "refund_status": refund_status,
                "refund_failed": refund_failed,
                "warning_sent": warning_sent,
                "message": message,
            }
        )

    def resolve_issue(self, order_item_id: int, vendor_user_id: int, action: str, notes: str | None = None):
        action = (action or "").strip()
        if action not in RESOLVE_ACTIONS:
            return validation_error("Invalid action. Use confirm_delivery or issue_refund.", action=action)
        vendor, err = self._vendor_for_user(vendor_user_id)
        if err is not None:
            return err
        item = self.store.get_item_for_vendor(order_item_id, vendor.id)
        if item is None:
            return not_found("Order item not found", order_item_id=order_item_id)
        if item.issue_reported_at is None or item.issue_status is None:
            return validation_error("No issue has been reported for this item", order_item_id=item.id)
        if item.issue_status not in IssueStatus.OPEN:
            return validation_error("Issue has already been resolved", order_item_id=item.id)

        notes = (notes or "").strip() or None
        now = self._now()
        if action == "confirm_delivery":
            return self._confirm_delivery(item, vendor, vendor_user_id, notes, now)
        return self._issue_refund(item, vendor, vendor_user_id, notes, now)

    def _confirm_delivery(self, item, vendor, vendor_user_id: int, notes, now):
        resolution_notes = "Vendor confirmed delivery." + (f" Notes: {notes}" if notes else "")
        if not self.store.resolve_issue_if_open(
            item.id, resolved_by=vendor_user_id, notes=resolution_notes, now=now, escalate=True
        ):
            return validation_error("Issue has already been resolved", order_item_id=item.id)

        vertical = item.order.vertical_id
        self._notify(
            item.order.buyer_user_id,
            "issue_resolved",
            {
                "order_number": item.order.order_number,
                "resolution": "Vendor confirmed the item was delivered. If you disagree, please contact support.",
            },
            vertical=vertical,
        )
        admin_ids = self._best_effort("admin_lookup", self.store.list_admin_user_ids, ADMIN_NOTIFY_LIMIT) or []
        for admin_id in admin_ids:
            self._notify(
                admin_id,
                "issue_disputed",
                {"order_number": item.order.order_number, "vendor_name": vendor.business_name},
                vertical=vertical,
            )
        log_event(
            "order_issue_disputed",
            actor_user_id=vendor_user_id,
            subject_type="order_item",
            subject_id=item.id,
            severity="WARN",
            metadata={"notes": notes or ""},
        )
        return Ok(
            {
                "order_item_id": item.id,
                "action": "confirm_delivery",
                "issue_status": IssueStatus.RESOLVED,
                "message": "Delivery confirmed. Admin has been notified for review.",
            }
        )

    def _issue_refund(self, item, vendor, vendor_user_id: int, notes, now):
        if item.cancelled_at is not None:
            return validation_error("Item already cancelled", order_item_id=item.id)
        reason = "Vendor-initiated refund for reported issue." + (f" Notes: {notes}" if notes else "")
        payment = self._payment_for(item)
        won = self.store.cancel_item_if_active(
            item.id,
            cancelled_by="vendor",
            reason=reason,
            refund_amount_cents=item.subtotal_cents,
            refund_pending=payment is not None and item.subtotal_cents > 0,
            now=now,
            via_open_issue=True,
        )
        if not won:
            return validation_error("Issue has already been resolved", order_item_id=item.id)

        self.store.resolve_issue_if_open(item.id, resolved_by=vendor_user_id, notes=notes, now=now)
        self._after_cancel(
            item,
            actor_type="vendor",
            actor_id=vendor_user_id,
            reason="issue_refund",
            metadata={"refund_amount_cents": item.subtotal_cents},
        )
        refund_status, refund_failed = self._refund(
            item, payment, item.subtotal_cents, flow="issue_refund", actor_id=vendor_user_id
        )
        self._notify(
            item.order.buyer_user_id,
            "issue_resolved",
            {
                "order_number": item.order.order_number,
                "resolution": "Vendor has issued a refund for this item.",
            },
            vertical=item.order.vertical_id,
        )
        return Ok(
            {
                "order_item_id": item.id,
                "action": "issue_refund",
                "issue_status": IssueStatus.RESOLVED,
                "refund_amount_cents": item.subtotal_cents,
                "refund_status": refund_status,
                "refund_failed": refund_failed,
                "message": MSG_REFUND_ISSUE if refund_failed else "Refund issued and issue resolved.",
            }
        )

    def _advance(self, order_item_id: int, vendor_user_id: int, to_status: str, template_key: str):
        vendor, err = self._vendor_for_user(vendor_user_id)
        if err is not None:
            return err
        item = self.store.get_item_for_vendor(order_item_id, vendor.id)
        if item is None:
            return not_found("Order item not found", order_item_id=order_item_id)
        if item.cancelled_at is not None:
            return validation_error("Item already cancelled", order_item_id=item.id)
        if not can_transition(item.status, to_status):
            return validation_error(
                f"Cannot move item from {item.status} to {to_status}",
                order_item_id=item.id,
                status=item.status,
            )

        now = self._now()
        if not self.store.advance_item_status(item.id, from_statuses=(item.status,), to_status=to_status, now=now):
            return validation_error("Item status changed; please refresh and try again", order_item_id=item.id)

        self._best_effort(
            "record_transition",
            self.store.record_transition,
            item,
            from_status=item.status,
            to_status=to_status,
            actor_type="vendor",
            actor_id=vendor_user_id,
        )
        if to_status == OrderItemStatus.CONFIRMED:
            updated = self._best_effort("vendor_counter", self.store.increment_vendor_counter, vendor.id, "confirmed")
            if updated is not None:
                self._best_effort(
                    "vendor_reliability",
                    recalculate_vendor_reliability,
                    self.store,
                    self.notifier,
                    updated,
                    now=now,
                    vertical=item.order.vertical_id,
                )

        market = self.store.get_market(item.market_id) if item.market_id is not None else None
        self._notify(
            item.order.buyer_user_id,
            template_key,
            {
                "order_number": item.order.order_number,
                "vendor_name": vendor.business_name,
                "item_title": item.listing_title,
                "market_name": market.name if market else None,
            },
            vertical=item.order.vertical_id,
        )
        return Ok({"order_item_id": item.id, "status": to_status, "previous_status": item.status})

    def vendor_confirm(self, order_item_id: int, vendor_user_id: int):
        return self._advance(order_item_id, vendor_user_id, OrderItemStatus.CONFIRMED, "order_confirmed")

    def vendor_mark_ready(self, order_item_id: int, vendor_user_id: int):
        return self._advance(order_item_id, vendor_user_id, OrderItemStatus.READY, "order_ready")

    def vendor_fulfill(self, order_item_id: int, vendor_user_id: int):
        return self._advance(order_item_id, vendor_user_id, OrderItemStatus.FULFILLED, "order_fulfilled")

    # -- processor callbacks -----------------------------------------------------

    def confirm_refund(self, order_item_id: int | None = None, refund_reference: str = ""):
        if order_item_id is not None:
            item = self.store.get_item(order_item_id)
        else:
            item = self.store.get_item_by_refund_reference(refund_reference)
        if item is None:
            return not_found("Order item not found", order_item_id=order_item_id, refund_reference=refund_reference)
        if item.status == OrderItemStatus.REFUNDED:
            return validation_error("Refund already confirmed", order_item_id=item.id)
        if item.status != OrderItemStatus.CANCELLED:
            return validation_error("Item is not cancelled", order_item_id=item.id, status=item.status)

        if not self.store.mark_refund_result(item.id, status="succeeded", reference=refund_reference, now=self._now()):
            return validation_error("Refund already confirmed", order_item_id=item.id)
        self._best_effort(
            "record_transition",
            self.store.record_transition,
            item,
            from_status=OrderItemStatus.CANCELLED,
            to_status=OrderItemStatus.REFUNDED,
            actor_type="processor",
            reason="refund_confirmed",
            metadata={"refund_reference": refund_reference},
        )
        self._notify(
            item.order.buyer_user_id,
            "order_refunded",
            {"order_number": item.order.order_number, "amount_cents": item.refund_amount_cents},
            vertical=item.order.vertical_id,
        )
        return Ok({"order_item_id": item.id, "status": OrderItemStatus.REFUNDED})

    # -- checkout --------------------------------------------------------------------

    def place_order(self, buyer_user_id: int, lines: list[dict], payment_method: str = "stripe"):
        payment_method = (payment_method or "").strip().lower()
        if payment_method not in PAYMENT_METHODS:
            return validation_error("Unsupported payment method", payment_method=payment_method)
        if not lines:
            return validation_error("Order must contain at least one item")

        now = self._now()
        resolved = []
        for line in lines:
            try:
                listing_id = int(line.get("listing_id"))
                market_id = int(line.get("market_id"))
                quantity = int(line.get("quantity") or 1)
            except (TypeError, ValueError):
                return validation_error("Each item needs listing_id, market_id and quantity")
            if quantity < 1:
                return validation_error("Quantity must be at least 1", listing_id=listing_id)
            gate = ensure_listing_accepting_orders(
                self.store, listing_id, market_id, now, default_cutoff_hours=self.default_cutoff_hours
            )
            if not gate.ok:
                return gate
            listing, _availability = gate.value
            resolved.append((listing, market_id, quantity))

        taken = []
        for listing, _market_id, quantity in resolved:
            if not self.store.decrement_inventory(listing.id, quantity):
                for prev_listing, prev_qty in taken:
                    self._best_effort("restore_inventory", self.store.restore_inventory, prev_listing.id, prev_qty)
                return validation_error(f"Not enough inventory for {listing.title}", listing_id=listing.id)
            taken.append((listing, quantity))

        try:
            order = self.store.create_order(
                buyer_user_id=buyer_user_id,
                payment_method=payment_method,
                lines=[
                    {
                        "listing_id": listing.id,
                        "vendor_profile_id": listing.vendor_profile_id,
                        "market_id": market_id,
                        "quantity": quantity,
                        "unit_price_cents": listing.price_cents,
                    }
                    for listing, market_id, quantity in resolved
                ],
                vertical_id=resolved[0][0].vertical_id,
                actor_id=buyer_user_id,
            )
        except Exception:
            self.store.rollback()
            for listing, quantity in taken:
                self._best_effort("restore_inventory", self.store.restore_inventory, listing.id, quantity)
            raise

        self.log.info("order_placed order_id=%s items=%s payment_method=%s", order.id, order.item_count, payment_method)
        return Ok(order)
