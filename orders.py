"""
Procurement orders and their embedded payment record.

Order status:

    Pending -> Approved -> [Processing] -> Delivered -> Payment Pending
            -> Received (payment submitted) -> Paid

Payment status, gated by the order status:

    Pending -> Submitted -> [Approved] -> Paid ; Submitted -> Rejected -> Submitted

Receipt is the one step that touches inventory. The order transition is
committed first (its revision check lets exactly one receipt through), then
the stock is credited, then the order is flagged ``stock_credited``. If the
credit fails the receipt is reverted against the revision it wrote. Cancel
debits only what the flag says was credited.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from config import Config
from database import commit_revision, create_document, find_by_id, now, oid, with_id
from errors import (
    AlreadyConfirmed,
    CannotCancelPaid,
    CannotDelete,
    ConcurrentModification,
    InvalidInput,
    InvalidTransition,
    NotFound,
    NotYetPaid,
    PersistenceError,
    Unauthorized,
    WorkflowError,
)
from identity import IdentityService, history_entry
from logger import logger
from schemas import PAYMENT_METHODS, Order, Payment, Stamp
from stock_ledger import StockLedger

COLLECTION = "order"

DELETABLE = ("Pending", "Rejected", "Cancelled")
PRICE_EDITABLE = ("Pending", "Approved", "Processing")
REJECTABLE = ("Pending", "Approved", "Processing")
PAYMENT_LOCKED = ("Paid", "Confirmed", "Cancelled")


def _total(quantity: int, unit_price: float) -> float:
    return quantity * unit_price


class OrderPaymentWorkflow:
    def __init__(self, database, ledger: StockLedger, identity: IdentityService):
        self.db = database
        self.ledger = ledger
        self.identity = identity

    # ---------- Helpers ----------

    def _load(self, order_id: str) -> dict:
        doc = find_by_id(COLLECTION, order_id, database=self.db)
        if not doc:
            raise NotFound("Order", str(order_id))
        return doc

    def _require_status(self, doc: dict, allowed: tuple, target: str) -> str:
        current = doc.get("status")
        if current not in allowed:
            raise InvalidTransition(current, target)
        return current

    def _require_payment_status(self, doc: dict, allowed: tuple, target: str) -> str:
        current = doc.get("payment", {}).get("status")
        if current not in allowed:
            raise InvalidTransition(current, target, f"Payment is '{current}'; cannot move to '{target}'")
        return current

    def _commit(self, doc: dict, changes: Dict[str, Any], action: str,
                actor: Optional[Stamp] = None, detail: Optional[str] = None) -> dict:
        entry = history_entry(action, actor=actor, detail=detail)
        updated = commit_revision(COLLECTION, doc, changes, entry, database=self.db)
        logger.info(f"Order {doc['_id']}: {action} (status {updated.get('status')}, "
                    f"payment {updated.get('payment', {}).get('status')})")
        return with_id(updated)

    # ---------- Lifecycle ----------

    def create(
        self,
        quantity: int,
        unit_price: float,
        item_id: Optional[str] = None,
        item_name: Optional[str] = None,
        supplier_id: Optional[str] = None,
        supplier_name: Optional[str] = None,
        description: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> dict:
        if not item_id and not item_name:
            raise InvalidInput("Please provide either item ID or item name")
        if not supplier_id and not supplier_name:
            raise InvalidInput("Please provide either supplier ID or supplier name")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidInput("Quantity must be at least 1")
        if unit_price is None or unit_price <= 0:
            raise InvalidInput("Unit price must be greater than 0")

        if item_id:
            item = self.ledger.get_item(item_id)
            item_id = item["id"]
            item_name = item_name or item.get("name")
        if supplier_id:
            supplier = self.identity.resolve(supplier_id)
            supplier_id = supplier["id"]
            supplier_name = supplier_name or supplier["name"]

        creator = self.identity.optional_stamp(created_by)
        try:
            order = Order(
                item_id=item_id,
                item_name=item_name,
                supplier_id=supplier_id,
                supplier_name=supplier_name,
                quantity=quantity,
                unit_price=unit_price,
                total_cost=_total(quantity, unit_price),
                description=description,
                estimated_delivery=estimated_delivery,
                created_by=creator,
                payment=Payment(),
                history=[history_entry("created", actor=creator)],
            )
        except ValidationError as e:
            raise InvalidInput(f"Validation failed: {e.errors()[0]['msg']}")
        order_id = create_document(COLLECTION, order, database=self.db)
        logger.info(f"Order {order_id} created: {quantity} x {item_name} at {unit_price}")
        return self.get(order_id)

    def get(self, order_id: str) -> dict:
        return with_id(self._load(order_id))

    def update(self, order_id: str, changes: Dict[str, Any], by: Optional[str] = None) -> dict:
        editable = {"description", "estimated_delivery", "tracking_number", "notes", "quantity", "unit_price"}
        unknown = set(changes) - editable
        if unknown:
            raise InvalidInput(f"Fields not editable: {', '.join(sorted(unknown))}")
        doc = self._load(order_id)
        updates = dict(changes)
        if "quantity" in changes or "unit_price" in changes:
            if doc.get("status") not in PRICE_EDITABLE:
                raise InvalidTransition(doc.get("status"), "Edited",
                                        "Quantity and price are fixed once an order is delivered")
            quantity = changes.get("quantity", doc["quantity"])
            unit_price = changes.get("unit_price", doc["unit_price"])
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise InvalidInput("Quantity must be at least 1")
            if unit_price is None or unit_price <= 0:
                raise InvalidInput("Unit price must be greater than 0")
            updates["total_cost"] = _total(quantity, unit_price)
        return self._commit(doc, updates, "edited", actor=self.identity.optional_stamp(by),
                            detail=", ".join(sorted(changes)))

    def approve(self, order_id: str, by: Optional[str] = None) -> dict:
        doc = self._load(order_id)
        self._require_status(doc, ("Pending",), "Approved")
        return self._commit(doc, {"status": "Approved"}, "approved", actor=self.identity.optional_stamp(by))

    def mark_processing(self, order_id: str, by: Optional[str] = None) -> dict:
        doc = self._load(order_id)
        self._require_status(doc, ("Approved",), "Processing")
        return self._commit(doc, {"status": "Processing"}, "processing", actor=self.identity.optional_stamp(by))

    def mark_delivered(self, order_id: str, tracking_number: Optional[str] = None,
                       delivery_date: Optional[datetime] = None, by: Optional[str] = None) -> dict:
        doc = self._load(order_id)
        self._require_status(doc, ("Approved", "Processing"), "Delivered")
        changes = {"status": "Delivered", "delivery_date": delivery_date or now()}
        if tracking_number:
            changes["tracking_number"] = tracking_number
        return self._commit(doc, changes, "delivered", actor=self.identity.optional_stamp(by))

    def mark_received(self, order_id: str, by: Optional[str] = None) -> dict:
        doc = self._load(order_id)
        self._require_status(doc, ("Delivered",), "Payment Pending")
        actor = self.identity.optional_stamp(by)
        item_id = doc.get("item_id")
        if item_id:
            # Fail before any write when the item is gone.
            self.ledger.get_item(item_id)

        # stock_credited stays False until the ledger has actually been credited,
        # so a stranded receipt is never debited by cancel.
        received = commit_revision(
            COLLECTION,
            doc,
            {
                "status": "Payment Pending",
                "payment.status": "Pending",
                "stock_credited": False,
                "received_at": now(),
            },
            history_entry("received", actor=actor),
            database=self.db,
        )
        logger.info(f"Order {order_id}: received")
        if not item_id:
            return with_id(received)

        try:
            self.ledger.credit(item_id, doc["quantity"])
        except WorkflowError as e:
            logger.warning(f"Stock credit failed for order {order_id}, reverting receipt: {e}")
            try:
                self._commit(
                    received,
                    {
                        "status": "Delivered",
                        "payment.status": doc.get("payment", {}).get("status", "Pending"),
                        "received_at": None,
                    },
                    "receipt reverted",
                    actor=actor,
                    detail=e.message,
                )
            except WorkflowError as revert_error:
                logger.error(f"Order {order_id} left received without stock credit: {revert_error}")
                raise revert_error from e
            raise
        return self._record_credit(received, item_id)

    def _record_credit(self, received: dict, item_id: str) -> dict:
        """Flag the order as credited unless it was cancelled while the credit ran."""
        entry = history_entry("stock credited", detail=f"{received['quantity']} to item {item_id}")
        try:
            updated = self.db[COLLECTION].find_one_and_update(
                {"_id": received["_id"], "stock_credited": False, "status": {"$ne": "Cancelled"}},
                {
                    "$set": {"stock_credited": True, "updated_at": now()},
                    "$inc": {"revision": 1},
                    "$push": {"history": entry},
                },
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Stock credited for order {received['_id']} but the order could not be flagged: {e}")
            raise PersistenceError(f"Failed to record stock credit on order {received['_id']}: {e}")
        if updated is None:
            # Cancelled between receipt and credit; cancel saw nothing to debit.
            logger.warning(f"Order {received['_id']} cancelled during receipt, taking back stock credit")
            self.ledger.debit(item_id, received["quantity"])
            raise ConcurrentModification(COLLECTION, str(received["_id"]))
        return with_id(updated)

    def reject(self, order_id: str, notes: Optional[str] = None, by: Optional[str] = None) -> dict:
        doc = self._load(order_id)
        self._require_status(doc, REJECTABLE, "Rejected")
        changes = {"status": "Rejected"}
        if notes:
            changes["notes"] = notes
        return self._commit(doc, changes, "rejected", actor=self.identity.optional_stamp(by), detail=notes)

    def cancel(self, order_id: str, reason: Optional[str] = None, by: Optional[str] = None) -> dict:
        doc = self._load(order_id)
        status = doc.get("status")
        if status == "Paid":
            raise CannotCancelPaid()
        if status in ("Cancelled", "Rejected"):
            raise InvalidTransition(status, "Cancelled")
        actor = self.identity.optional_stamp(by)

        credited = doc.get("stock_credited") and doc.get("item_id")
        if credited:
            self.ledger.debit(doc["item_id"], doc["quantity"])

        changes = {
            "status": "Cancelled",
            "payment.status": "Cancelled",
            "cancelled_at": now(),
            "cancellation_reason": reason,
            "stock_credited": False,
        }
        try:
            return self._commit(doc, changes, "cancelled", actor=actor, detail=reason or "No reason provided")
        except WorkflowError:
            if credited:
                logger.warning(f"Cancelling order {order_id} failed, restoring stock for item {doc['item_id']}")
                try:
                    self.ledger.credit(doc["item_id"], doc["quantity"])
                except WorkflowError as e:
                    logger.error(f"Could not restore stock for item {doc['item_id']} after failed cancel: {e}")
            raise

    def delete(self, order_id: str) -> None:
        doc = self._load(order_id)
        if doc.get("status") not in DELETABLE:
            raise CannotDelete(doc.get("status"))
        result = self.db[COLLECTION].delete_one({"_id": doc["_id"], "revision": doc.get("revision", 0)})
        if result.deleted_count == 0:
            raise InvalidTransition(doc.get("status"), "Deleted", "Order changed while deleting; re-read and retry")
        logger.info(f"Order {order_id} deleted")

    # ---------- Payment ----------

    def submit_payment(self, order_id: str, submitted_by: str, payment_method: Optional[str] = None,
                       transaction_id: Optional[str] = None, notes: Optional[str] = None) -> dict:
        submitter = self.identity.stamp(submitted_by, Config.SUBMITTER_ROLES)
        doc = self._load(order_id)
        current = doc.get("status")
        payment = doc.get("payment", {})
        # A rejected payment goes back to finance with whatever details were corrected since.
        resubmission = current == "Received" and payment.get("status") == "Rejected"
        if current != "Payment Pending" and not resubmission:
            raise InvalidTransition(
                current, "Received",
                "Only orders with 'Payment Pending' status or a rejected payment can have payment submitted",
            )
        previous = payment if resubmission else {}
        method = payment_method or previous.get("payment_method") or "Bank Transfer"
        if method not in PAYMENT_METHODS:
            raise InvalidInput(f"Invalid payment method. Valid methods are: {', '.join(PAYMENT_METHODS)}")
        changes = {
            "status": "Received",
            "payment.status": "Submitted",
            "payment.submitted_by": submitter.model_dump(),
            "payment.submitted_at": now(),
            "payment.payment_method": method,
            "payment.transaction_id": transaction_id or previous.get("transaction_id") or "",
            "payment.notes": notes or previous.get("notes") or "",
            "payment.amount_paid": previous.get("amount_paid") or doc["total_cost"],
            "payment.rejection_reason": None,
        }
        action = "payment resubmitted" if resubmission else "payment submitted"
        return self._commit(doc, changes, action, actor=submitter, detail=notes)

    def approve_payment(self, order_id: str, approver: str) -> dict:
        stamp = self.identity.stamp(approver, Config.FINANCE_ROLES)
        doc = self._load(order_id)
        self._require_payment_status(doc, ("Submitted",), "Approved")
        changes = {
            "payment.status": "Approved",
            "payment.approved_by": stamp.model_dump(),
            "payment.approved_at": now(),
        }
        return self._commit(doc, changes, "payment approved", actor=stamp)

    def process_payment(self, order_id: str, processor: str, payment_method: str,
                        transaction_id: Optional[str] = None, amount_paid: Optional[float] = None,
                        notes: Optional[str] = None) -> dict:
        stamp = self.identity.stamp(processor, Config.FINANCE_ROLES)
        if not payment_method:
            raise InvalidInput("Payment method is required")
        if payment_method not in PAYMENT_METHODS:
            raise InvalidInput(f"Invalid payment method. Valid methods are: {', '.join(PAYMENT_METHODS)}")
        if payment_method != "Cash" and not transaction_id:
            raise InvalidInput("Transaction ID is required for non-cash payments")
        if amount_paid is None or amount_paid <= 0:
            raise InvalidInput("Valid amount paid is required")

        doc = self._load(order_id)
        self._require_payment_status(doc, ("Submitted", "Approved"), "Paid")
        paid_at = now()
        changes = {
            "status": "Paid",
            "payment.status": "Paid",
            "payment.payment_method": payment_method,
            "payment.transaction_id": transaction_id or "",
            "payment.amount_paid": float(amount_paid),
            "payment.payment_date": paid_at,
            "payment.processed_by": stamp.model_dump(),
            "payment.processed_at": paid_at,
        }
        return self._commit(doc, changes, "payment processed", actor=stamp, detail=notes)

    def reject_payment(self, order_id: str, approver: str, reason: str) -> dict:
        stamp = self.identity.stamp(approver, Config.FINANCE_ROLES)
        if not reason:
            raise InvalidInput("Rejection reason is required")
        doc = self._load(order_id)
        self._require_payment_status(doc, ("Submitted",), "Rejected")
        changes = {
            "status": "Received",
            "payment.status": "Rejected",
            "payment.rejection_reason": reason,
        }
        return self._commit(doc, changes, "payment rejected", actor=stamp, detail=reason)

    def confirm_supplier_receipt(self, order_id: str, confirmed_by: str, transaction_proof: Optional[str] = None,
                                 notes: Optional[str] = None) -> dict:
        stamp = self.identity.stamp(confirmed_by)
        doc = self._load(order_id)
        payment = doc.get("payment", {})
        if payment.get("supplier_confirmation"):
            raise AlreadyConfirmed(payment.get("status"))
        if payment.get("status") != "Paid":
            raise NotYetPaid(payment.get("status"))

        supplier_id = doc.get("supplier_id")
        is_admin = stamp.role in Config.ADMIN_ROLES
        if supplier_id and stamp.id != supplier_id and not is_admin:
            raise Unauthorized("Only the order's supplier can confirm receipt of payment")
        if not supplier_id and stamp.role not in Config.SUPPLIER_ROLES and not is_admin:
            raise Unauthorized("Only a supplier can confirm receipt of payment")

        changes = {
            "payment.supplier_confirmation": True,
            "payment.confirmed_by": stamp.model_dump(),
            "payment.confirmation_date": now(),
            "payment.transaction_proof": transaction_proof or "",
            "payment.confirmation_notes": notes or f"Payment confirmed as received by supplier. Proof: {transaction_proof}",
        }
        return self._commit(doc, changes, "supplier confirmed payment", actor=stamp, detail=notes)

    def update_payment_details(self, order_id: str, payment_method: Optional[str] = None,
                               transaction_id: Optional[str] = None, amount_paid: Optional[float] = None,
                               notes: Optional[str] = None, by: Optional[str] = None) -> dict:
        doc = self._load(order_id)
        current = doc.get("payment", {}).get("status")
        if current in PAYMENT_LOCKED:
            raise InvalidTransition(current, current, f"Cannot update payment details for a '{current}' payment")
        changes: Dict[str, Any] = {}
        if payment_method:
            if payment_method not in PAYMENT_METHODS:
                raise InvalidInput(f"Invalid payment method. Valid methods are: {', '.join(PAYMENT_METHODS)}")
            changes["payment.payment_method"] = payment_method
        if transaction_id is not None:
            changes["payment.transaction_id"] = transaction_id
        if amount_paid is not None:
            if amount_paid <= 0:
                raise InvalidInput("Amount paid must be greater than 0")
            changes["payment.amount_paid"] = float(amount_paid)
        if notes:
            changes["payment.notes"] = notes
        if not changes:
            raise InvalidInput("No payment details to update")
        return self._commit(doc, changes, "payment details edited", actor=self.identity.optional_stamp(by))
