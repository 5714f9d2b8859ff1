# chatorders/errors.py
from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from .inventory import Shortage


class OrderEngineError(Exception):
    """Base class for failures raised by the order engine."""


class DataIntegrityError(OrderEngineError):
    """A referenced row is missing or does not belong to the merchant."""


class InsufficientStockError(OrderEngineError):
    """Pre-check found products whose stock does not cover the order."""

    def __init__(self, shortages: List["Shortage"]):
        self.shortages = shortages
        names = ", ".join(s.name for s in shortages)
        super().__init__(f"insufficient stock: {names}")


class StockRaceError(OrderEngineError):
    """Stock changed between the pre-check and the conditional decrement."""

    def __init__(self, product_id: int, need: int):
        self.product_id = product_id
        self.need = need
        super().__init__(f"NO_STOCK_RACE:{product_id}:{need}")


class UpstreamError(OrderEngineError):
    """The language-understanding service failed or returned something unusable."""


class AlreadyReservedError(OrderEngineError):
    """The order's stock is already reserved, or the order is no longer pending."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"order {order_id} already reserved or not pending")


class InvalidTransitionError(OrderEngineError):
    """Requested status change is not allowed from the order's current status."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"cannot move order from {current} to {requested}")
