"""Custom exceptions for the storefront backend."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class ValidationError(StorefrontError):
    """Raised when a request is well-formed but fails a business rule."""

    def __init__(self, message: str, **extra):
        self.extra = extra
        super().__init__(message)


class InvalidIdError(StorefrontError):
    """Raised when an id is not a valid ObjectId."""

    def __init__(self, kind: str, value: str):
        self.kind = kind
        self.value = value
        super().__init__(f"Invalid {kind} ID")


class NotFoundError(StorefrontError):
    """Raised when a record doesn't exist (or is hidden from the caller)."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"{kind.capitalize()} not found")


class ConflictError(StorefrontError):
    """Raised when a write would break a uniqueness rule."""

    pass


class WebhookSignatureError(StorefrontError):
    """Raised when an inbound gateway callback fails signature verification."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Webhook Error: {reason}")


class PaymentGatewayError(StorefrontError):
    """Raised when a call to the payment gateway fails."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Server error {action}")
