"""
Shared contract for payment provider adapters.

A gateway knows how to start a payment (`initiate`), ask the provider
where a payment stands (`poll_status`) and read the provider's
asynchronous notification (`parse_webhook`).  It never touches the
database; the booking coordinator decides what a result means.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import requests

from .exceptions import (
    PaymentProviderError,
    ProviderAuthError,
    ProviderDeclined,
    ProviderRateLimited,
    ProviderTransientError,
)
from .tokens import AccessTokenCache

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

DEFAULT_TIMEOUT = 30


@dataclass(frozen=True)
class PaymentRequest:
    reference: str
    amount: Decimal
    description: str
    phone: str = ""
    email: str = ""
    name: str = ""


@dataclass(frozen=True)
class InitiationResult:
    correlation_id: str
    checkout_url: Optional[str] = None
    customer_message: str = ""


@dataclass(frozen=True)
class PaymentResult:
    status: str
    correlation_id: str = ""
    amount: Optional[Decimal] = None
    transaction_id: str = ""
    error: str = ""
    merchant_reference: str = ""

    @classmethod
    def pending(cls, correlation_id: str = "", error: str = "") -> "PaymentResult":
        return cls(status=STATUS_PENDING, correlation_id=correlation_id, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_FAILED)


@dataclass(frozen=True)
class PayoutResult:
    succeeded: bool
    conversation_id: str = ""
    transaction_id: str = ""
    description: str = ""


class PaymentGateway(ABC):
    """Interface every provider adapter implements."""

    method: str = ""

    @abstractmethod
    def initiate(self, request: PaymentRequest) -> InitiationResult:
        ...

    @abstractmethod
    def poll_status(self, correlation_id: str) -> PaymentResult:
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict) -> PaymentResult:
        ...


class HttpPaymentGateway(PaymentGateway):
    """
    Common plumbing for JSON-over-HTTPS providers with bearer tokens.

    Subclasses supply `_fetch_token` and may refine `_raise_for_response`
    to recognise provider-specific error bodies.
    """

    log_prefix = "[GATEWAY]"

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: int = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.tokens = AccessTokenCache(self._fetch_token)

    @abstractmethod
    def _fetch_token(self):
        """Return ``(token, lifetime_seconds)``."""

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s %s %s failed: %s", self.log_prefix, method, path, e)
            raise ProviderTransientError(str(e), provider=self.method) from e

    def _call(self, method: str, path: str, **kwargs) -> dict:
        """
        Authenticated JSON call.  A 401 drops the cached token and the
        request is retried once with a fresh one.
        """
        for attempt in (1, 2):
            headers = {
                "Authorization": f"Bearer {self.tokens.get()}",
                "Accept": "application/json",
            }
            resp = self._send(method, path, headers=headers, **kwargs)
            if resp.status_code == 401 and attempt == 1:
                logger.info("%s token rejected on %s, refreshing", self.log_prefix, path)
                self.tokens.invalidate()
                continue
            break

        self._raise_for_response(resp)
        return self._json(resp)

    def _json(self, resp: requests.Response) -> dict:
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderTransientError(
                f"Unparseable response body: {resp.text[:200]!r}", provider=self.method
            ) from e
        return data if isinstance(data, dict) else {}

    def _raise_for_response(self, resp: requests.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        logger.warning(
            "%s non-2xx response status=%s body_snippet=%r",
            self.log_prefix, status, resp.text[:300],
        )
        error: PaymentProviderError
        if status == 401:
            error = ProviderAuthError("Authentication failed", code=status, provider=self.method)
        elif status in (403, 429):
            error = ProviderRateLimited("Rate limited", code=status, provider=self.method)
        elif status >= 500:
            error = ProviderTransientError("Provider unavailable", code=status, provider=self.method)
        else:
            error = ProviderDeclined(resp.text[:200] or "Request rejected", code=status, provider=self.method)
        raise error
