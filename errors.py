"""Exceptions raised by the store layer.

Every store failure is a ``StoreError`` carrying the HTTP status it maps to.
The route boundary turns it into ``{"message": ..., **details}``:

- ValidationFailed (400)
- DuplicateError (400)
- AuthenticationError (401)
- PermissionDeniedError (403)
- NotFoundError (404)
- InsufficientStockError, InsufficientFundsError, InvalidStateError,
  ConcurrentUpdateError (409)
- DatabaseUnavailableError (500)
"""

from typing import Any, Dict, Optional


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, **self.details}


class ValidationFailed(StoreError):
    status_code = 400


class DuplicateError(StoreError):
    status_code = 400


class AuthenticationError(StoreError):
    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class PermissionDeniedError(StoreError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(StoreError):
    status_code = 404

    def __init__(self, resource: str, message: Optional[str] = None):
        super().__init__(message or f"{resource} not found")
        self.resource = resource


class InsufficientStockError(StoreError):
    """A stock reservation asked for more units than are available."""

    status_code = 409

    def __init__(self, product_id: str, requested: int, available: int, title: Optional[str] = None):
        name = title or product_id
        super().__init__(
            f"Insufficient stock for {name}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InsufficientFundsError(StoreError):
    status_code = 409

    def __init__(self, balance: float, amount: float):
        super().__init__(
            "Insufficient wallet balance",
            details={"balance": balance, "amount": amount},
        )
        self.balance = balance
        self.amount = amount


class InvalidStateError(StoreError):
    status_code = 409


class ConcurrentUpdateError(StoreError):
    """Optimistic update gave up after repeated version conflicts."""

    status_code = 409

    def __init__(self, collection: str, doc_id: Any, attempts: int):
        super().__init__(
            "Document was modified concurrently, please retry",
            details={"collection": collection, "attempts": attempts},
        )
        self.doc_id = doc_id


class DatabaseUnavailableError(StoreError):
    status_code = 500

    def __init__(self, message: str = "Database not configured"):
        super().__init__(message)
