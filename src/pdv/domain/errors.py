class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, message: str, available: int = 0, requested: int = 0):
        super().__init__(message)
        self.available = available
        self.requested = requested


class CatalogUnavailableError(AppError):
    pass


class OrderServiceError(AppError):
    pass


class ConfigurationError(AppError):
    pass
