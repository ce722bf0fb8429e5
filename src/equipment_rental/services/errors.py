"""Custom service layer errors."""


class ServiceError(Exception):
    """Base error for service-layer failures."""


class ValidationError(ServiceError):
    """Raised when input is missing or fails a business rule validation."""


class NotFoundError(ServiceError):
    """Raised when an entity is not found."""


class ConflictError(ServiceError):
    """Raised when an item is no longer available or a concurrent write won."""


class PolicyViolation(ServiceError):
    """Raised when a guarded step is advanced without meeting its policy."""
