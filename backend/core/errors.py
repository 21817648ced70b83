"""
Inventory error taxonomy and the FastAPI handlers that render it.

Every failure the services raise is an ``InventoryError`` subclass carrying the
HTTP status the routers should answer with. Validation errors are raised
before any write; ``StorageError`` wraps persistence failures of the core
mutation.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Inventory error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


class MissingField(InventoryError):
    default_detail = "A required field is missing"


class InvalidQuantity(InventoryError):
    default_detail = "Quantity must be greater than zero"


class InvalidOperationType(InventoryError):
    default_detail = "Operation type must be add or remove"


class InvalidStatus(InventoryError):
    default_detail = "Invalid device status"


class InvalidRole(InventoryError):
    default_detail = "Role must be employee or admin"


class InvalidPassword(InventoryError):
    default_detail = "Password must be at least 6 characters"


class DeviceNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Device not found"


class OperationNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Operation not found"


class UserNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "User not found"


class NotificationNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Notification not found"


class DuplicateBarcode(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Barcode already exists"


class DuplicateEmail(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "A user with this email already exists"


class InsufficientQuantity(InventoryError):
    def __init__(self, available: int, requested: int | None = None):
        self.available = int(available)
        self.requested = requested
        detail = f"Insufficient quantity. Available quantity: {self.available}"
        if requested is not None:
            detail += f", requested: {int(requested)}"
        super().__init__(detail)

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["available_quantity"] = self.available
        return out


class NotApprovable(InventoryError):
    default_detail = "Operation has already been processed"


class HasDependentOperations(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Cannot delete: inventory operations reference this record"


class Forbidden(InventoryError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not allowed"


class Unauthorized(InventoryError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Please login"


class StorageError(InventoryError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Storage failure; the operation was not completed"


async def _inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error during %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=StorageError().to_dict(),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InventoryError, _inventory_error_handler)
    app.add_exception_handler(SQLAlchemyError, _storage_error_handler)
