"""Custom exceptions for the marketplace core."""

from typing import Optional


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    pass


class NotFoundError(MarketplaceError):
    """Raised when a product, order, review or user doesn't exist."""

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class InsufficientStockError(MarketplaceError):
    """Raised when a product has fewer units on hand than requested."""

    def __init__(self, product_id: str, requested: int, available: int, name: Optional[str] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.name = name
        label = name or product_id
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, requested: {requested}"
        )


class EmptyOrderError(MarketplaceError):
    """Raised when an order is submitted without items."""

    def __init__(self):
        super().__init__("Order has no items")


class ForbiddenError(MarketplaceError):
    """Raised when the requester doesn't own the resource and isn't an admin."""

    pass


class ValidationError(MarketplaceError):
    """Raised when a value breaks a schema constraint."""

    pass


class InvalidStatusTransitionError(ValidationError):
    """Raised when an order can't move from its current status to the requested one."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'")


class DuplicateReviewError(MarketplaceError):
    """Raised when a user reviews the same product twice."""

    def __init__(self, product_id: str, user_id: str):
        self.product_id = product_id
        self.user_id = user_id
        super().__init__(f"User {user_id} has already reviewed product {product_id}")


class PurchaseRequiredError(MarketplaceError):
    """Raised when no delivered order proves the reviewer bought the product."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            f"Only products you have bought and received can be reviewed: {product_id}"
        )
