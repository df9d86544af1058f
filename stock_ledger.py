"""
Item stock quantities and the item catalog.

Credits and debits are single atomic ``$inc`` updates so concurrent receipts
against the same item never lose an increment. A debit is conditioned on the
stock on hand, which keeps ``current_stock`` non-negative without a
read-then-write.
"""

from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import create_document, find_by_id, now, oid, with_id
from errors import InsufficientStock, InvalidInput, InvalidQuantity, NotFound, PersistenceError
from logger import logger
from schemas import ITEM_CATEGORIES, Item

COLLECTION = "item"

# Fields that the catalog update may touch; stock moves go through the ledger.
EDITABLE_FIELDS = {
    "name", "description", "category", "unit", "low_stock_threshold", "min_stock_level",
    "max_stock_level", "reorder_point", "unit_cost", "selling_price", "location",
    "supplier_id", "supplier_name", "notes",
}


def with_stock_flags(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = with_id(doc)
    stock = doc.get("current_stock", 0)
    doc["is_low_stock"] = stock <= doc.get("low_stock_threshold", 10)
    doc["is_critical_stock"] = stock <= doc.get("min_stock_level", 5)
    return doc


def _positive_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput(f"Quantity must be a positive whole number, got {quantity!r}")
    return quantity


class StockLedger:
    def __init__(self, database):
        self.db = database

    @property
    def items(self):
        return self.db[COLLECTION]

    # ---------- Stock movements ----------

    def credit(self, item_id: str, quantity: int) -> dict:
        quantity = _positive_quantity(quantity)
        try:
            doc = self.items.find_one_and_update(
                {"_id": oid(item_id)},
                {"$inc": {"current_stock": quantity}, "$set": {"last_restocked": now(), "updated_at": now()}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to credit item {item_id}: {e}")
        if doc is None:
            raise NotFound("Item", str(item_id))
        logger.info(f"Credited {quantity} to item {item_id}, stock now {doc['current_stock']}")
        return with_stock_flags(doc)

    def debit(self, item_id: str, quantity: int) -> dict:
        quantity = _positive_quantity(quantity)
        try:
            doc = self.items.find_one_and_update(
                {"_id": oid(item_id), "current_stock": {"$gte": quantity}},
                {"$inc": {"current_stock": -quantity}, "$set": {"updated_at": now()}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to debit item {item_id}: {e}")
        if doc is None:
            current = self.items.find_one({"_id": oid(item_id)})
            if current is None:
                raise NotFound("Item", str(item_id))
            raise InsufficientStock(current.get("current_stock", 0), quantity)
        logger.info(f"Debited {quantity} from item {item_id}, stock now {doc['current_stock']}")
        return with_stock_flags(doc)

    def set_exact(self, item_id: str, new_quantity: int) -> dict:
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int) or new_quantity < 0:
            raise InvalidQuantity(f"Stock cannot be negative or fractional, got {new_quantity!r}")
        try:
            doc = self.items.find_one_and_update(
                {"_id": oid(item_id)},
                {"$set": {"current_stock": new_quantity, "updated_at": now()}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to set stock for item {item_id}: {e}")
        if doc is None:
            raise NotFound("Item", str(item_id))
        logger.info(f"Stock for item {item_id} set to {new_quantity}")
        return with_stock_flags(doc)

    # ---------- Catalog ----------

    def create_item(self, item: Item) -> dict:
        item_id = create_document(COLLECTION, item, database=self.db)
        logger.info(f"Created item {item_id} ({item.name})")
        return self.get_item(item_id)

    def get_item(self, item_id: str) -> dict:
        doc = find_by_id(COLLECTION, item_id, database=self.db)
        if not doc:
            raise NotFound("Item", str(item_id))
        return with_stock_flags(doc)

    def list_items(self, category: Optional[str] = None, active_only: bool = True) -> List[dict]:
        q: Dict[str, Any] = {}
        if active_only:
            q["is_active"] = True
        if category:
            if category not in ITEM_CATEGORIES:
                raise InvalidInput(f"Invalid category. Valid categories are: {', '.join(ITEM_CATEGORIES)}")
            q["category"] = category
        return [with_stock_flags(d) for d in self.items.find(q).sort("name", 1)]

    def low_stock_items(self) -> List[dict]:
        return [d for d in self.list_items() if d["is_low_stock"]]

    def update_item(self, item_id: str, changes: Dict[str, Any]) -> dict:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInput(f"Fields not editable here: {', '.join(sorted(unknown))}")
        current = self.get_item(item_id)
        merged = {k: v for k, v in current.items() if k in Item.model_fields}
        merged.update(changes)
        try:
            validated = Item(**merged)
        except ValueError as e:
            raise InvalidInput(str(e))
        updates = {k: getattr(validated, k) for k in changes}
        self.items.update_one({"_id": oid(item_id)}, {"$set": {**updates, "updated_at": now()}})
        return self.get_item(item_id)

    def deactivate_item(self, item_id: str) -> dict:
        result = self.items.update_one({"_id": oid(item_id)}, {"$set": {"is_active": False, "updated_at": now()}})
        if result.matched_count == 0:
            raise NotFound("Item", str(item_id))
        logger.info(f"Deactivated item {item_id}")
        return self.get_item(item_id)
