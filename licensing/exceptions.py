"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class LicensingError(Exception):
    """Base exception for all licensing errors."""

    pass


class InvalidInputError(LicensingError):
    """Raised when caller input is malformed or missing."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ResourceNotFoundError(LicensingError):
    """Raised when a product, purchase, license or activation doesn't exist."""

    def __init__(self, resource: str, identifier: str | None = None) -> None:
        self.resource = resource
        self.identifier = identifier
        message = f"{resource.capitalize()} not found"
        if identifier:
            message = f"{message}: {identifier}"
        super().__init__(message)


class PaymentNotCompletedError(LicensingError):
    """Raised when a license is claimed before the payment completed."""

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Payment not completed (status: {status})")


class PaymentProviderError(LicensingError):
    """Raised when the payment gateway is unreachable or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(LicensingError):
    """Raised when a webhook payload is missing its signature or fails the MAC check."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class LicenseKeyGenerationError(LicensingError):
    """Raised when no unused license key was found within the retry budget."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Failed to generate unique license key after {attempts} attempts")


class AuthenticationError(LicensingError):
    """Raised when the caller's identity cannot be established."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
