"""
Failure taxonomy for the workflow layer.

Every failure carries a machine-checkable ``kind`` and a human-readable
message. The HTTP layer maps ``http_status`` straight onto the response.
"""

from typing import Optional


class WorkflowError(Exception):
    kind = "WorkflowError"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message}


class NotFound(WorkflowError):
    kind = "NotFound"
    http_status = 404

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        suffix = f" ({entity_id})" if entity_id else ""
        super().__init__(f"{entity} not found{suffix}")


class InvalidInput(WorkflowError):
    kind = "InvalidInput"


class InvalidQuantity(InvalidInput):
    kind = "InvalidQuantity"


class NotAssigned(InvalidInput):
    kind = "NotAssigned"


class Unauthorized(WorkflowError):
    kind = "Unauthorized"
    http_status = 403


class InvalidTransition(WorkflowError):
    kind = "InvalidTransition"

    def __init__(self, current: Optional[str], attempted: str, message: Optional[str] = None):
        self.current = current
        self.attempted = attempted
        super().__init__(message or f"Cannot move from '{current}' to '{attempted}'")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["current"] = self.current
        data["attempted"] = self.attempted
        return data


class CannotCancelPaid(InvalidTransition):
    kind = "CannotCancelPaid"

    def __init__(self):
        super().__init__("Paid", "Cancelled", "Cannot cancel already paid orders")


class CannotDelete(InvalidTransition):
    kind = "CannotDelete"

    def __init__(self, current: str):
        super().__init__(current, "Deleted", f"Cannot delete an order in '{current}' status")


class AlreadyConfirmed(InvalidTransition):
    kind = "AlreadyConfirmed"

    def __init__(self, current: str):
        super().__init__(current, "Confirmed", "Payment already confirmed by supplier")


class NotYetPaid(InvalidTransition):
    kind = "NotYetPaid"

    def __init__(self, current: str):
        super().__init__(current, "Confirmed", f"Cannot confirm payment. Payment status is '{current}', not 'Paid'")


class DuplicatePending(WorkflowError):
    kind = "DuplicatePending"
    http_status = 409


class InsufficientStock(WorkflowError):
    kind = "InsufficientStock"

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock. Available: {available}, Requested: {requested}")


class ConcurrentModification(WorkflowError):
    kind = "ConcurrentModification"
    http_status = 409

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} was modified concurrently; re-read and retry")


class PersistenceError(WorkflowError):
    kind = "PersistenceError"
    http_status = 500
