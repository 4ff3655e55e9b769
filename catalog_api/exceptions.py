from dataclasses import dataclass
from typing import List, Optional


class ApplicationError(Exception):
    """Base class for application-specific errors."""
    pass


@dataclass(frozen=True)
class FieldError:
    """A single rejected field and the reason it was rejected."""

    field: str
    reason: str


class ProductValidationError(ApplicationError):
    """Raised when a product draft or update carries invalid fields."""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.reason}" for e in self.errors)
        super().__init__(f"Invalid product data: {summary}")

    @classmethod
    def single(cls, field: str, reason: str) -> "ProductValidationError":
        return cls([FieldError(field=field, reason=reason)])


class ProductNotFoundError(ApplicationError):
    """Raised when a product is not found."""
    pass


class ProductAlreadyExistsError(ApplicationError):
    """Raised when attempting to insert a product whose row key is taken."""
    pass


class ProductConflictError(ApplicationError):
    """Raised when a product cannot be created because its row key keeps colliding."""
    pass


class PreconditionFailedError(ApplicationError):
    """Raised when a replace carries an ETag that no longer matches the stored record."""
    pass


class StoreUnavailableError(ApplicationError):
    """Raised for transport or infrastructure failures of a backing store."""
    def __init__(self, message="A storage error occurred.", original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseError(StoreUnavailableError):
    """Raised for general database-related errors not specifically handled."""
    def __init__(self, message="A database error occurred.", original_exception=None):
        super().__init__(message, original_exception=original_exception)


class AssetStoreError(StoreUnavailableError):
    """Raised when the blob store cannot be reached or rejects a request."""
    def __init__(self, message="An asset storage error occurred.", original_exception=None):
        super().__init__(message, original_exception=original_exception)


class AssetNotFoundError(ApplicationError):
    """Raised when an image is not held by the blob store."""
    pass
