"""
Errors raised by payment provider adapters.

Every error carries a `retryable` flag: retryable errors mean "we could
not learn anything this time", so a status poll treats them as pending.
Only `ProviderDeclined` is a definitive answer from the provider.
"""


class PaymentProviderError(Exception):
    retryable = False

    def __init__(self, message: str = "", code: str = "", provider: str = ""):
        self.message = message or self.__class__.__name__
        self.code = str(code or "")
        self.provider = provider
        super().__init__(self.message)

    def __str__(self) -> str:
        prefix = f"[{self.provider}] " if self.provider else ""
        suffix = f" (code={self.code})" if self.code else ""
        return f"{prefix}{self.message}{suffix}"


class ProviderAuthError(PaymentProviderError):
    """Credentials were rejected or a token could not be obtained."""
    retryable = True


class ProviderRateLimited(PaymentProviderError):
    retryable = True


class ProviderTransientError(PaymentProviderError):
    """Network failure, 5xx, or the provider is still processing the request."""
    retryable = True


class ProviderDeclined(PaymentProviderError):
    """The provider explicitly refused the request."""
    retryable = False
