"""Domain exceptions raised by the order and payment services."""


class PaymentServiceError(Exception):
    pass


class NotFound(PaymentServiceError):
    pass


class Forbidden(PaymentServiceError):
    pass


class InvalidState(PaymentServiceError):
    pass


class AmountTooLow(PaymentServiceError):
    def __init__(self, amount: int, minimum: int, message: str):
        self.amount = amount
        self.minimum = minimum
        super().__init__(message)


class UnsupportedProvider(PaymentServiceError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported payment provider: {provider}")


class ProviderError(PaymentServiceError):
    """The payment processor call failed (transport, timeout or rejection)."""


class SignatureInvalid(PaymentServiceError):
    """Webhook authenticity could not be proven."""
