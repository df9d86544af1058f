"""
Read-only views over material requests and orders for dashboards.

Nothing here writes. References to actors, plays or items that no longer
exist are reported by id with a null display name instead of failing.
"""

import re
from typing import Dict, List, Optional

from bson import ObjectId

from config import Config
from database import find_by_id, oid, with_id
from errors import InvalidInput, NotFound
from schemas import ORDER_STATUSES, PAYMENT_STATUSES, REQUEST_STATUSES

REQUESTS = "materialrequest"
ORDERS = "order"

PAYMENT_ACTIVITY = ("Submitted", "Approved", "Paid", "Rejected")


def _status_counts() -> Dict[str, int]:
    return {status: 0 for status in REQUEST_STATUSES}


class WorkflowQueryService:
    def __init__(self, database):
        self.db = database

    def _name(self, collection: str, ref_id: Optional[str], field: str) -> Optional[str]:
        if not ref_id or not ObjectId.is_valid(ref_id):
            return None
        doc = self.db[collection].find_one({"_id": ObjectId(ref_id)}, {field: 1})
        return doc.get(field) if doc else None

    def _present_request(self, doc: dict) -> dict:
        doc = with_id(doc)
        doc["actor_name"] = self._name("user", doc.get("actor_id"), "name")
        doc["play_title"] = self._name("play", doc.get("play_id"), "title")
        return doc

    def _present_order(self, doc: dict) -> dict:
        doc = with_id(doc)
        if doc.get("item_id"):
            doc["item_name"] = self._name("item", doc["item_id"], "name") or doc.get("item_name")
        if doc.get("supplier_id"):
            doc["supplier_name"] = self._name("user", doc["supplier_id"], "name") or doc.get("supplier_name")
        return doc

    # ---------- Material requests ----------

    def material_request_stats(self, play_id: Optional[str] = None) -> dict:
        q = {"play_id": str(oid(play_id))} if play_id else {}
        stats = {"total_requests": 0, **_status_counts(), "by_play": []}
        per_play: Dict[str, dict] = {}
        for req in self.db[REQUESTS].find(q, {"play_id": 1, "status": 1}):
            status = req.get("status") or "pending"
            key = req.get("play_id")
            if key not in per_play:
                per_play[key] = {"play_id": key, "play_title": self._name("play", key, "title"),
                                 "total": 0, **_status_counts()}
            stats["total_requests"] += 1
            stats[status] += 1
            per_play[key]["total"] += 1
            per_play[key][status] += 1
        stats["by_play"] = list(per_play.values())
        return stats

    def play_material_requests(self, play_id: str) -> dict:
        key = str(oid(play_id))
        requests = self.db[REQUESTS].find({"play_id": key}).sort("requested_at", 1)
        return {
            "play_id": key,
            "play_title": self._name("play", key, "title"),
            "material_requests": [self._present_request(r) for r in requests],
        }

    def actor_material_requests(self, actor_id: str) -> List[dict]:
        requests = self.db[REQUESTS].find({"actor_id": str(actor_id)}).sort("requested_at", -1)
        return [self._present_request(r) for r in requests]

    def plays_with_requests(self, status: str) -> List[dict]:
        if status not in REQUEST_STATUSES:
            raise InvalidInput(f"Invalid status. Valid statuses are: {', '.join(REQUEST_STATUSES)}")
        grouped: Dict[str, list] = {}
        for req in self.db[REQUESTS].find({"status": status}).sort("requested_at", 1):
            grouped.setdefault(req.get("play_id"), []).append(self._present_request(req))
        return [
            {"play_id": key, "play_title": self._name("play", key, "title"), "material_requests": reqs}
            for key, reqs in grouped.items()
        ]

    # ---------- Orders ----------

    def orders_by_status(self, status: Optional[str] = None, payment_status: Optional[str] = None) -> List[dict]:
        q = {}
        if status:
            if status not in ORDER_STATUSES:
                raise InvalidInput(f"Invalid status. Valid statuses are: {', '.join(ORDER_STATUSES)}")
            q["status"] = status
        if payment_status:
            if payment_status not in PAYMENT_STATUSES:
                raise InvalidInput(f"Invalid payment status. Valid statuses are: {', '.join(PAYMENT_STATUSES)}")
            q["payment.status"] = payment_status
        return [self._present_order(d) for d in self.db[ORDERS].find(q).sort("created_at", -1)]

    def orders_for_supplier(self, supplier: str) -> List[dict]:
        if ObjectId.is_valid(supplier):
            q = {"supplier_id": str(ObjectId(supplier))}
        else:
            q = {"supplier_name": {"$regex": f"^{re.escape(supplier)}$", "$options": "i"}}
        return [self._present_order(d) for d in self.db[ORDERS].find(q).sort("created_at", -1)]

    def pending_supplier_confirmation(self, supplier_id: Optional[str] = None) -> List[dict]:
        q = {"payment.status": "Paid", "payment.supplier_confirmation": False}
        if supplier_id:
            q["supplier_id"] = str(oid(supplier_id))
        return [self._present_order(d) for d in self.db[ORDERS].find(q).sort("created_at", -1)]

    def payment_details(self, order_id: str) -> dict:
        doc = find_by_id(ORDERS, order_id, database=self.db)
        if not doc:
            raise NotFound("Order", str(order_id))
        order = self._present_order(doc)
        return {
            "id": order["id"],
            "item_name": order.get("item_name"),
            "supplier_name": order.get("supplier_name"),
            "total_cost": order.get("total_cost"),
            "status": order.get("status"),
            "payment": order.get("payment", {}),
        }

    def finance_summary(self) -> dict:
        by_status = {status: {"count": 0, "amount": 0} for status in PAYMENT_STATUSES}
        pipeline = [{"$group": {"_id": "$payment.status", "count": {"$sum": 1}, "amount": {"$sum": "$total_cost"}}}]
        for row in self.db[ORDERS].aggregate(pipeline):
            if row["_id"] in by_status:
                by_status[row["_id"]] = {"count": row["count"], "amount": row["amount"]}

        unconfirmed = {"count": 0, "amount": 0}
        pipeline = [
            {"$match": {"payment.status": "Paid", "payment.supplier_confirmation": False}},
            {"$group": {"_id": None, "count": {"$sum": 1}, "amount": {"$sum": "$total_cost"}}},
        ]
        for row in self.db[ORDERS].aggregate(pipeline):
            unconfirmed = {"count": row["count"], "amount": row["amount"]}

        return {
            "total_orders": self.db[ORDERS].count_documents({}),
            "pending_payments": by_status["Submitted"]["count"],
            "approved_payments": by_status["Approved"]["count"],
            "paid_orders": by_status["Paid"]["count"],
            "pending_confirmation": unconfirmed["count"],
            "submitted_amount": by_status["Submitted"]["amount"],
            "approved_amount": by_status["Approved"]["amount"],
            "paid_amount": by_status["Paid"]["amount"],
            "pending_confirmation_amount": unconfirmed["amount"],
            "by_payment_status": by_status,
        }

    def recent_payments(self, limit: Optional[int] = None) -> List[dict]:
        limit = limit or Config.RECENT_PAYMENTS_LIMIT
        cursor = (
            self.db[ORDERS]
            .find({"payment.status": {"$in": list(PAYMENT_ACTIVITY)}})
            .sort("payment.submitted_at", -1)
            .limit(limit)
        )
        return [self._present_order(d) for d in cursor]
