"""Exception hierarchy for the gateway simulator."""


class GatewayError(Exception):
    """Base exception for all gateway errors."""


class SignatureMismatch(GatewayError):
    """Raised when a request signature is missing or does not verify."""


class UnknownMerchant(GatewayError):
    """Raised when a merchant token does not resolve to a merchant."""


class InactiveMerchant(GatewayError):
    """Raised when a merchant exists but is not allowed to transact."""


class RecordNotFound(GatewayError):
    """Raised when a referenced transaction no longer exists."""


class InvalidTransition(GatewayError):
    """Raised when a status change would move a transaction backwards."""


class DeliveryFailure(GatewayError):
    """Raised when a single webhook attempt is not acknowledged."""


class ConfigurationInvalid(GatewayError):
    """Raised when an outcome configuration is rejected."""
