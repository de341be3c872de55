class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class AuthorizationError(AppError):
    pass


class InvalidPricingInput(ValidationError):
    pass


class OutOfStockError(AppError):
    pass


class InsufficientStockError(AppError):
    pass


class EmptyCartError(ValidationError):
    pass


class UnauthenticatedError(AuthorizationError):
    pass


class StorageUnavailableError(AppError):
    """Record store timed out, is locked, or cannot be reached."""


class RecordStoreError(AppError):
    """Record store rejected a request."""


class PartialCommitError(AppError):
    """Order header was stored but a later commit step failed.

    The record store could not roll the header back, so an operator has to
    reconcile the order manually. The cart is left untouched for a retry.
    """

    def __init__(self, message: str, *, order_number: str, order_id, step: str):
        super().__init__(message)
        self.order_number = order_number
        self.order_id = order_id
        self.step = step
