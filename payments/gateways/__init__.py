"""
Payment provider adapters.

`build_gateways` turns the ``PAYMENT_GATEWAYS`` setting into one adapter
per configured provider.  The payments app does this once at startup so
token and IPN caches are shared by every request and task in a process.
"""
import logging
from urllib.parse import urlencode

from . import mpesa, pesapal
from .base import PaymentGateway

logger = logging.getLogger(__name__)

BUILDERS = {
    "mpesa": mpesa.from_settings,
    "pesapal": pesapal.from_settings,
}

CALLBACK_KEYS = ("CALLBACK_URL", "PAYOUT_RESULT_URL", "IPN_URL")


def with_token(url: str, token: str) -> str:
    """Append the shared webhook token to a callback URL."""
    if not url or not token:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode({'token': token})}"


def build_gateways(config: dict, webhook_token: str = "", session=None) -> dict[str, PaymentGateway]:
    gateways = {}
    for method, conf in (config or {}).items():
        builder = BUILDERS.get(method)
        if builder is None:
            logger.warning("[GATEWAY] unknown payment method %r in PAYMENT_GATEWAYS, skipping", method)
            continue
        if not conf.get("CONSUMER_KEY"):
            logger.info("[GATEWAY] %s has no credentials configured, skipping", method)
            continue
        conf = {**conf, **{k: with_token(conf[k], webhook_token) for k in CALLBACK_KEYS if k in conf}}
        gateways[method] = builder(conf, session=session)
    return gateways
