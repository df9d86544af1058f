"""
Database Schemas for the Theater Production Backend

Each Pydantic model maps to a MongoDB collection using the lowercase class name as the collection name.

Collections:
- user: people known to the identity service (actors, inventory, finance, suppliers, admins)
- play: productions with their assigned actors (maintained elsewhere, read here)
- item: inventory stock-keeping units
- materialrequest: an actor's request for materials for one play
- order: procurement orders with an embedded payment record

Workflow aggregates (materialrequest, order) carry a ``revision`` counter used
for conditional writes and an append-only ``history`` of audit entries.
"""

from datetime import datetime
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, Field, field_validator

ItemCategory = Literal[
    "Electronics", "Furniture", "Stationery", "Costumes", "Cleaning", "Food",
    "Beverages", "Office", "Medical", "Equipment", "Other",
]
RequestStatus = Literal["pending", "approved", "processing", "prepared", "collected", "rejected"]
OrderStatus = Literal[
    "Pending", "Approved", "Processing", "Delivered", "Received",
    "Payment Pending", "Paid", "Rejected", "Cancelled",
]
PaymentStatus = Literal["Pending", "Submitted", "Approved", "Paid", "Rejected", "Confirmed", "Cancelled"]
PaymentMethod = Literal["Bank Transfer", "MPesa", "Cheque", "Cash", "Other"]

ITEM_CATEGORIES = get_args(ItemCategory)
REQUEST_STATUSES = get_args(RequestStatus)
ORDER_STATUSES = get_args(OrderStatus)
PAYMENT_STATUSES = get_args(PaymentStatus)
PAYMENT_METHODS = get_args(PaymentMethod)


class Stamp(BaseModel):
    """Who performed a privileged action, captured at action time."""
    id: str = Field(..., description="User id")
    name: str = Field(..., description="Display name resolved from the user record")
    role: Optional[str] = Field(None, description="Role held when the action was taken")


class HistoryEntry(BaseModel):
    actor: Optional[Stamp] = Field(None, description="Who acted, if known")
    action: str = Field(..., description="Transition or edit applied")
    timestamp: datetime
    detail: Optional[str] = Field(None, description="Free-text reason or note")


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: Optional[str] = Field(None, description="Contact email")
    role: str = Field(..., description="Actor | Inventory | Procurement | Finance | Administration | Supplier")
    department: Optional[str] = Field(None, description="Department name")


class PlayActor(BaseModel):
    actor_id: str = Field(..., description="Assigned actor's user id")
    role: str = Field(..., description="Character played")
    status: Literal["Active", "Inactive"] = "Active"
    confirmed: bool = Field(False, description="Actor confirmed availability")


class Play(BaseModel):
    title: str
    description: Optional[str] = None
    venue: Optional[str] = None
    date: Optional[datetime] = None
    actors: List[PlayActor] = Field(default_factory=list)


class Item(BaseModel):
    name: str = Field(..., min_length=1, description="Item name")
    description: Optional[str] = None
    category: ItemCategory = Field("Other", description="Inventory category")
    unit: str = Field("pcs", description="Unit of measure")
    current_stock: int = Field(0, ge=0, description="Quantity on hand")
    low_stock_threshold: int = Field(10, ge=0)
    min_stock_level: int = Field(5, ge=0)
    max_stock_level: int = Field(100, ge=0)
    reorder_point: int = Field(20, ge=0)
    unit_cost: float = Field(0, ge=0)
    selling_price: float = Field(0, ge=0)
    location: Optional[str] = None
    supplier_id: Optional[str] = Field(None, description="Supplier user id")
    supplier_name: Optional[str] = None
    last_restocked: Optional[datetime] = None
    is_active: bool = True
    notes: Optional[str] = None


class MaterialLine(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)
    unit: str = Field("pcs")


class MaterialRequest(BaseModel):
    actor_id: str = Field(..., description="Requesting actor")
    play_id: str = Field(..., description="Play the materials are for")
    materials: List[MaterialLine] = Field(..., min_length=1)
    status: RequestStatus = "pending"
    requested_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    processing_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    collected_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    prepared_by: Optional[Stamp] = None
    notes: Optional[str] = None
    revision: int = 0
    history: List[HistoryEntry] = Field(default_factory=list)

    @field_validator("materials", mode="before")
    @classmethod
    def _accept_plain_names(cls, value):
        # Older clients send bare material names.
        if isinstance(value, list):
            return [{"name": v} if isinstance(v, str) else v for v in value]
        return value


class Payment(BaseModel):
    status: PaymentStatus = "Pending"
    submitted_by: Optional[Stamp] = None
    submitted_at: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    approved_by: Optional[Stamp] = None
    approved_at: Optional[datetime] = None
    processed_by: Optional[Stamp] = None
    processed_at: Optional[datetime] = None
    amount_paid: Optional[float] = None
    payment_proof: Optional[str] = None
    supplier_confirmation: bool = False
    confirmed_by: Optional[Stamp] = None
    confirmation_date: Optional[datetime] = None
    transaction_proof: Optional[str] = None
    confirmation_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None


class Order(BaseModel):
    item_id: Optional[str] = Field(None, description="Referenced item")
    item_name: Optional[str] = Field(None, description="Free-text item when no catalog entry exists")
    supplier_id: Optional[str] = Field(None, description="Supplier user id")
    supplier_name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., gt=0)
    total_cost: float = Field(..., description="quantity x unit_price")
    description: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    delivery_date: Optional[datetime] = None
    status: OrderStatus = "Pending"
    stock_credited: bool = Field(False, description="Stock was credited on receipt")
    received_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[Stamp] = None
    payment: Payment = Field(default_factory=Payment)
    revision: int = 0
    history: List[HistoryEntry] = Field(default_factory=list)
