"""
Error types raised by the storefront services.

Every error carries the HTTP status it maps to; main.py turns them into
``{"message": ...}`` responses.
"""
from typing import Optional


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def context(self) -> dict:
        return {}


class ValidationError(StoreError):
    status_code = 400


class NotFound(StoreError):
    status_code = 404


class Forbidden(StoreError):
    status_code = 403


class Unexpected(StoreError):
    status_code = 500


class EmptyOrder(ValidationError):
    def __init__(self, message: str = "No order items"):
        super().__init__(message)


class ProductNotFound(NotFound):
    def __init__(self, name: str):
        super().__init__(f"Product {name} not found")
        self.name = name


class ProductInactive(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"Product {name} is no longer available")
        self.name = name


class InsufficientStock(ValidationError):
    def __init__(self, name: str, requested: int, available: int, variant: Optional[str] = None):
        if variant:
            message = f"Insufficient stock for {name} ({variant}). Available: {available}, Requested: {requested}"
        else:
            message = f"Insufficient stock for {name}. Available: {available}, Requested: {requested}"
        super().__init__(message)
        self.name = name
        self.requested = requested
        self.available = available

    def context(self) -> dict:
        return {"product": self.name, "requested": self.requested, "available": self.available}


class InvalidTransition(ValidationError):
    def __init__(self, current: str, target: str, message: Optional[str] = None):
        super().__init__(message or f"Cannot change order status from {current} to {target}")
        self.current = current
        self.target = target
