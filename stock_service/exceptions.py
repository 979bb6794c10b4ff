"""
Exception hierarchy for the stock service.

Every error carries a machine-checkable ``kind`` and the HTTP status the API
layer answers with, so callers can branch on invalid input, conflict,
not-found and internal failures without parsing messages.
"""


class StockServiceError(Exception):
    """
    Base exception for all stock service errors.

    Catch this exception to handle any failure raised by the engine or stores.
    """

    kind: str = "internal"
    status_code: int = 500

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = "An unspecified stock service error occurred."
        super().__init__(message)


class InvalidInput(StockServiceError):
    """A required field is missing or cannot be parsed. Storage is never touched."""

    kind = "invalid_input"
    status_code = 400


class StockConflict(StockServiceError):
    """
    Raised when a sale cannot be admitted: the item is missing or its stock is
    lower than the requested quantity. Nothing was written.
    """

    kind = "conflict"
    status_code = 409

    def __init__(self, item_id: int, message: str | None = None) -> None:
        self.item_id = item_id
        super().__init__(message or f"Insufficient stock or missing item (id={item_id})")


class ItemInUse(StockServiceError):
    """Raised when deleting an item that recorded sales still reference."""

    kind = "conflict"
    status_code = 409

    def __init__(self, item_id: int, sale_count: int) -> None:
        self.item_id = item_id
        self.sale_count = sale_count
        super().__init__(f"Item {item_id} is referenced by {sale_count} sale(s); reverse them first")


class NotFound(StockServiceError):
    kind = "not_found"
    status_code = 404


class SaleNotFound(NotFound):
    """The sale to reverse does not exist, or a concurrent reversal removed it first."""

    def __init__(self, sale_id: int | str) -> None:
        self.sale_id = sale_id
        super().__init__(f"Sale {sale_id} not found")


class ItemNotFound(NotFound):
    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found")


class RecordNotFound(NotFound):
    pass


class InternalError(StockServiceError):
    """
    A storage or transaction failure. The unit of work has already been rolled
    back when this is raised; nothing is retried.
    """

    kind = "internal"
    status_code = 500


class ItemAlreadyExists(StockServiceError):
    kind = "conflict"
    status_code = 409

    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__(f"Item {item_id} already exists")


class UploadRejected(InvalidInput):
    """The uploaded file is not an accepted image type or is too large."""


class UploadTooLarge(UploadRejected):
    status_code = 413
