"""Shared fixtures: an in-memory MongoDB and seeded users, plays and items."""

import mongomock
import pytest
from bson import ObjectId

from identity import IdentityService
from material_requests import MaterialRequestWorkflow
from orders import OrderPaymentWorkflow
from queries import WorkflowQueryService
from stock_ledger import StockLedger


@pytest.fixture
def db():
    """Fresh mongomock database per test."""
    return mongomock.MongoClient().db


def _insert(db, collection, doc):
    return str(db[collection].insert_one(doc).inserted_id)


@pytest.fixture
def users(db):
    """Ids of one user per role used by the workflows."""
    return {
        "actor_a": _insert(db, "user", {"name": "Amani", "email": "amani@example.com", "role": "Actor"}),
        "actor_b": _insert(db, "user", {"name": "Baraka", "email": "baraka@example.com", "role": "Actor"}),
        "actor_c": _insert(db, "user", {"name": "Chiku", "email": "chiku@example.com", "role": "Actor"}),
        "jane": _insert(db, "user", {"name": "Jane", "email": "jane@example.com", "role": "Inventory"}),
        "finance": _insert(db, "user", {"name": "Fatuma", "email": "fatuma@example.com", "role": "Finance"}),
        "supplier": _insert(db, "user", {"name": "Props Ltd", "email": "props@example.com", "role": "Supplier"}),
        "other_supplier": _insert(db, "user", {"name": "Fabric Co", "email": "fabric@example.com", "role": "Supplier"}),
        "admin": _insert(db, "user", {"name": "Ada", "email": "ada@example.com", "role": "Administration"}),
    }


@pytest.fixture
def play_id(db, users):
    """A play with actors A and B active and actor C inactive."""
    return _insert(db, "play", {
        "title": "The Lion and the Jewel",
        "actors": [
            {"actor_id": users["actor_a"], "role": "Sidi", "status": "Active", "confirmed": True},
            {"actor_id": users["actor_b"], "role": "Lakunle", "status": "Active", "confirmed": False},
            {"actor_id": users["actor_c"], "role": "Baroka", "status": "Inactive", "confirmed": False},
        ],
    })


@pytest.fixture
def identity(db):
    return IdentityService(db)


@pytest.fixture
def ledger(db):
    return StockLedger(db)


@pytest.fixture
def requests_workflow(db, identity):
    return MaterialRequestWorkflow(db, identity, allow_prepare_from_approved=False)


@pytest.fixture
def orders(db, ledger, identity):
    return OrderPaymentWorkflow(db, ledger, identity)


@pytest.fixture
def queries(db):
    return WorkflowQueryService(db)


@pytest.fixture
def item_id(db):
    """An item with 10 in stock and a low-stock threshold of 5."""
    return _insert(db, "item", {
        "name": "Stage blood",
        "category": "Costumes",
        "unit": "bottle",
        "current_stock": 10,
        "low_stock_threshold": 5,
        "min_stock_level": 2,
        "is_active": True,
        "revision": 0,
    })


@pytest.fixture
def missing_id():
    return str(ObjectId())
