import os
from datetime import datetime
from typing import List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import database
from errors import WorkflowError
from identity import IdentityService
from logger import logger
from material_requests import MaterialRequestWorkflow
from orders import OrderPaymentWorkflow
from queries import WorkflowQueryService
from schemas import Item, MaterialLine
from stock_ledger import StockLedger

app = FastAPI(title="Theater Production API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} refused ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# ---------- Wiring ----------

def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def get_ledger(db=Depends(get_db)) -> StockLedger:
    return StockLedger(db)


def get_material_requests(db=Depends(get_db)) -> MaterialRequestWorkflow:
    return MaterialRequestWorkflow(db, IdentityService(db))


def get_orders(db=Depends(get_db)) -> OrderPaymentWorkflow:
    return OrderPaymentWorkflow(db, StockLedger(db), IdentityService(db))


def get_queries(db=Depends(get_db)) -> WorkflowQueryService:
    return WorkflowQueryService(db)


# ---------- Models for requests ----------

class StockAdjustment(BaseModel):
    quantity: int


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    low_stock_threshold: Optional[int] = None
    min_stock_level: Optional[int] = None
    max_stock_level: Optional[int] = None
    reorder_point: Optional[int] = None
    unit_cost: Optional[float] = None
    selling_price: Optional[float] = None
    location: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    notes: Optional[str] = None


class MaterialRequestIn(BaseModel):
    actor_id: str
    materials: List[Union[MaterialLine, str]] = Field(..., min_length=1)


class ActingUser(BaseModel):
    user_id: Optional[str] = None


class PrepareIn(BaseModel):
    prepared_by: str


class CollectIn(BaseModel):
    actor_id: str


class RejectIn(BaseModel):
    user_id: Optional[str] = None
    reason: Optional[str] = None


class OrderIn(BaseModel):
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    quantity: int
    unit_price: float
    description: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    created_by: Optional[str] = None


class OrderUpdate(BaseModel):
    description: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[float] = None
    user_id: Optional[str] = None


class DeliverIn(BaseModel):
    tracking_number: Optional[str] = None
    delivery_date: Optional[datetime] = None
    user_id: Optional[str] = None


class OrderNoteIn(BaseModel):
    user_id: Optional[str] = None
    notes: Optional[str] = None


class CancelIn(BaseModel):
    user_id: Optional[str] = None
    reason: Optional[str] = None


class PaymentSubmitIn(BaseModel):
    user_id: str
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class PaymentProcessIn(BaseModel):
    user_id: str
    payment_method: str
    transaction_id: Optional[str] = None
    amount_paid: float
    notes: Optional[str] = None


class PaymentRejectIn(BaseModel):
    user_id: str
    reason: str


class PaymentUpdateIn(BaseModel):
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    amount_paid: Optional[float] = None
    notes: Optional[str] = None
    user_id: Optional[str] = None


class SupplierConfirmIn(BaseModel):
    user_id: str
    transaction_proof: Optional[str] = None
    confirmation_notes: Optional[str] = None


def _materials(lines: List[Union[MaterialLine, str]]) -> list:
    return [line.model_dump() if isinstance(line, MaterialLine) else line for line in lines]


# ---------- Health ----------

@app.get("/")
def read_root():
    return {"message": "Theater Production Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = database.db
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name if hasattr(db, "name") else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                response["collections"] = db.list_collection_names()
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ---------- Items / Stock ----------

@app.post("/items", status_code=201)
def create_item(item: Item, ledger: StockLedger = Depends(get_ledger)):
    return ledger.create_item(item)


@app.get("/items")
def list_items(category: Optional[str] = Query(default=None), include_inactive: bool = False,
               ledger: StockLedger = Depends(get_ledger)):
    return ledger.list_items(category=category, active_only=not include_inactive)


@app.get("/items/low-stock")
def low_stock_items(ledger: StockLedger = Depends(get_ledger)):
    return ledger.low_stock_items()


@app.get("/items/{item_id}")
def get_item(item_id: str, ledger: StockLedger = Depends(get_ledger)):
    return ledger.get_item(item_id)


@app.put("/items/{item_id}")
def update_item(item_id: str, payload: ItemUpdate, ledger: StockLedger = Depends(get_ledger)):
    return ledger.update_item(item_id, payload.model_dump(exclude_unset=True))


@app.post("/items/{item_id}/deactivate")
def deactivate_item(item_id: str, ledger: StockLedger = Depends(get_ledger)):
    return ledger.deactivate_item(item_id)


@app.post("/items/{item_id}/stock/credit")
def credit_stock(item_id: str, payload: StockAdjustment, ledger: StockLedger = Depends(get_ledger)):
    return ledger.credit(item_id, payload.quantity)


@app.post("/items/{item_id}/stock/debit")
def debit_stock(item_id: str, payload: StockAdjustment, ledger: StockLedger = Depends(get_ledger)):
    return ledger.debit(item_id, payload.quantity)


@app.put("/items/{item_id}/stock")
def set_stock(item_id: str, payload: StockAdjustment, ledger: StockLedger = Depends(get_ledger)):
    return ledger.set_exact(item_id, payload.quantity)


# ---------- Material Requests ----------

@app.post("/plays/{play_id}/material-requests", status_code=201)
def submit_material_request(play_id: str, payload: MaterialRequestIn,
                            workflow: MaterialRequestWorkflow = Depends(get_material_requests)):
    return workflow.submit(play_id, payload.actor_id, _materials(payload.materials))


@app.get("/plays/{play_id}/material-requests")
def play_material_requests(play_id: str, queries: WorkflowQueryService = Depends(get_queries)):
    return queries.play_material_requests(play_id)


@app.patch("/material-requests/{request_id}/approve")
def approve_material_request(request_id: str, payload: ActingUser = ActingUser(), play_id: Optional[str] = None,
                             workflow: MaterialRequestWorkflow = Depends(get_material_requests)):
    return workflow.approve(request_id, play_id=play_id, by=payload.user_id)


@app.patch("/material-requests/{request_id}/processing")
def processing_material_request(request_id: str, payload: ActingUser = ActingUser(), play_id: Optional[str] = None,
                                workflow: MaterialRequestWorkflow = Depends(get_material_requests)):
    return workflow.mark_processing(request_id, play_id=play_id, by=payload.user_id)


@app.patch("/material-requests/{request_id}/prepare")
def prepare_material_request(request_id: str, payload: PrepareIn, play_id: Optional[str] = None,
                             workflow: MaterialRequestWorkflow = Depends(get_material_requests)):
    return workflow.prepare(request_id, payload.prepared_by, play_id=play_id)


@app.patch("/material-requests/{request_id}/collect")
def collect_material_request(request_id: str, payload: CollectIn, play_id: Optional[str] = None,
                             workflow: MaterialRequestWorkflow = Depends(get_material_requests)):
    return workflow.collect(request_id, payload.actor_id, play_id=play_id)


@app.patch("/material-requests/{request_id}/reject")
def reject_material_request(request_id: str, payload: RejectIn = RejectIn(), play_id: Optional[str] = None,
                            workflow: MaterialRequestWorkflow = Depends(get_material_requests)):
    return workflow.reject(request_id, reason=payload.reason, play_id=play_id, by=payload.user_id)


@app.get("/material-requests/actor/{actor_id}")
def actor_material_requests(actor_id: str, queries: WorkflowQueryService = Depends(get_queries)):
    return queries.actor_material_requests(actor_id)


@app.get("/material-requests/stats")
def material_request_stats(play_id: Optional[str] = None, queries: WorkflowQueryService = Depends(get_queries)):
    return queries.material_request_stats(play_id)


@app.get("/material-requests/status/{status}")
def plays_with_requests(status: str, queries: WorkflowQueryService = Depends(get_queries)):
    return queries.plays_with_requests(status)


# ---------- Orders ----------

@app.post("/orders", status_code=201)
def create_order(payload: OrderIn, orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.create(**payload.model_dump())


@app.get("/orders")
def list_orders(status: Optional[str] = None, payment_status: Optional[str] = None,
                queries: WorkflowQueryService = Depends(get_queries)):
    return queries.orders_by_status(status, payment_status)


@app.get("/orders/supplier/{supplier}")
def supplier_orders(supplier: str, queries: WorkflowQueryService = Depends(get_queries)):
    return queries.orders_for_supplier(supplier)


@app.get("/orders/pending-confirmation")
def pending_confirmation(supplier_id: Optional[str] = None, queries: WorkflowQueryService = Depends(get_queries)):
    return queries.pending_supplier_confirmation(supplier_id)


@app.get("/orders/finance/summary")
def finance_summary(queries: WorkflowQueryService = Depends(get_queries)):
    return queries.finance_summary()


@app.get("/orders/finance/recent-payments")
def recent_payments(limit: Optional[int] = Query(default=None, ge=1, le=200),
                    queries: WorkflowQueryService = Depends(get_queries)):
    return queries.recent_payments(limit)


@app.get("/orders/{order_id}")
def get_order(order_id: str, orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.get(order_id)


@app.get("/orders/{order_id}/payment-details")
def payment_details(order_id: str, queries: WorkflowQueryService = Depends(get_queries)):
    return queries.payment_details(order_id)


@app.put("/orders/{order_id}")
def update_order(order_id: str, payload: OrderUpdate, orders: OrderPaymentWorkflow = Depends(get_orders)):
    changes = payload.model_dump(exclude_unset=True)
    user_id = changes.pop("user_id", None)
    return orders.update(order_id, changes, by=user_id)


@app.put("/orders/{order_id}/approve")
def approve_order(order_id: str, payload: ActingUser = ActingUser(), orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.approve(order_id, by=payload.user_id)


@app.put("/orders/{order_id}/processing")
def processing_order(order_id: str, payload: ActingUser = ActingUser(),
                     orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.mark_processing(order_id, by=payload.user_id)


@app.put("/orders/{order_id}/deliver")
def deliver_order(order_id: str, payload: DeliverIn = DeliverIn(), orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.mark_delivered(order_id, payload.tracking_number, payload.delivery_date, by=payload.user_id)


@app.put("/orders/{order_id}/receive")
def receive_order(order_id: str, payload: ActingUser = ActingUser(), orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.mark_received(order_id, by=payload.user_id)


@app.put("/orders/{order_id}/reject")
def reject_order(order_id: str, payload: OrderNoteIn = OrderNoteIn(), orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.reject(order_id, notes=payload.notes, by=payload.user_id)


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: CancelIn = CancelIn(), orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.cancel(order_id, reason=payload.reason, by=payload.user_id)


@app.delete("/orders/{order_id}")
def delete_order(order_id: str, orders: OrderPaymentWorkflow = Depends(get_orders)):
    orders.delete(order_id)
    return {"ok": True}


@app.put("/orders/{order_id}/submit-payment")
def submit_payment(order_id: str, payload: PaymentSubmitIn, orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.submit_payment(order_id, payload.user_id, payload.payment_method,
                                 payload.transaction_id, payload.notes)


@app.put("/orders/{order_id}/approve-payment")
def approve_payment(order_id: str, payload: ActingUser, orders: OrderPaymentWorkflow = Depends(get_orders)):
    if not payload.user_id:
        raise HTTPException(status_code=400, detail="Approver user_id is required")
    return orders.approve_payment(order_id, payload.user_id)


@app.put("/orders/{order_id}/process-payment")
def process_payment(order_id: str, payload: PaymentProcessIn, orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.process_payment(order_id, payload.user_id, payload.payment_method,
                                  payload.transaction_id, payload.amount_paid, payload.notes)


@app.put("/orders/{order_id}/reject-payment")
def reject_payment(order_id: str, payload: PaymentRejectIn, orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.reject_payment(order_id, payload.user_id, payload.reason)


@app.put("/orders/{order_id}/update-payment")
def update_payment(order_id: str, payload: PaymentUpdateIn, orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.update_payment_details(order_id, payload.payment_method, payload.transaction_id,
                                         payload.amount_paid, payload.notes, by=payload.user_id)


@app.put("/orders/{order_id}/confirm-payment")
def confirm_payment(order_id: str, payload: SupplierConfirmIn, orders: OrderPaymentWorkflow = Depends(get_orders)):
    return orders.confirm_supplier_receipt(order_id, payload.user_id, payload.transaction_proof,
                                           payload.confirmation_notes)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
