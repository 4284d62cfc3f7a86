"""
Test settings: SQLite, eager Celery and in-memory e-mail.
"""
from .base import *  # noqa

DEBUG = False
SECRET_KEY = "test-secret"
ALLOWED_HOSTS = ["testserver", "localhost"]

# File-backed so threaded tests share one database; IMMEDIATE makes
# concurrent writers queue on the lock instead of failing.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
        "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
        "TEST": {"NAME": str(BASE_DIR / ".test-db.sqlite3")},
    }
}

CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}}

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
DEFAULT_FROM_EMAIL = "tickets@example.com"
PLATFORM_ADMIN_EMAIL = "admin@example.com"

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = None

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    "DEFAULT_THROTTLE_CLASSES": [],
}

PAYMENTS_WEBHOOK_TOKEN = ""

PAYMENT_GATEWAYS = {
    "mpesa": {
        "CONSUMER_KEY": "mpesa-key",
        "CONSUMER_SECRET": "mpesa-secret",
        "SHORTCODE": "174379",
        "PASSKEY": "passkey",
        "ENVIRONMENT": "sandbox",
        "CALLBACK_URL": "https://api.example.com/api/payments/mpesa/callback/",
        "B2C_SHORTCODE": "600000",
        "B2C_INITIATOR_NAME": "testapi",
        "B2C_SECURITY_CREDENTIAL": "credential",
        "PAYOUT_RESULT_URL": "https://api.example.com/api/payments/mpesa/payout-callback/",
    },
    "pesapal": {
        "CONSUMER_KEY": "pesapal-key",
        "CONSUMER_SECRET": "pesapal-secret",
        "ENVIRONMENT": "sandbox",
        "IPN_URL": "https://api.example.com/api/payments/pesapal/ipn/",
        "IPN_ID": "",
        "RETURN_URL": "https://app.example.com/checkout/complete",
        "CURRENCY": "KES",
    },
}

COMMISSION_DEFAULTS = {
    "PLATFORM_FEE_PERCENTAGE": "0.10",
    "MINIMUM_FEE": "0",
    "MAXIMUM_FEE": "1000",
    "IS_ACTIVE": True,
}

CELERY_BEAT_SCHEDULE = {}
