class SubscriptionSystemError(Exception):
    """Base exception for the subscription system."""

    code = "internal_error"
    status_code = 500


class AuthError(SubscriptionSystemError):
    """Raised when a webhook signature or credential cannot be verified."""

    code = "auth_error"
    status_code = 400


class PayloadError(SubscriptionSystemError):
    """Raised when a verified webhook body cannot be decoded."""

    code = "invalid_payload"
    status_code = 400


class ProviderError(SubscriptionSystemError):
    """Raised when a call to the billing provider fails."""

    code = "provider_error"
    status_code = 502

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class DataIntegrityError(SubscriptionSystemError):
    """Raised when an expected field or metadata entry is missing or inconsistent."""

    code = "data_integrity_error"
    status_code = 422


class StoreError(SubscriptionSystemError):
    """Raised when a persistence operation fails."""

    code = "store_error"
    status_code = 500


class ConfigurationError(SubscriptionSystemError):
    """Raised when required configuration is missing."""

    code = "configuration_error"
    status_code = 503
