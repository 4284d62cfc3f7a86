"""
Base settings for the EventPro ticketing backend.

This module defines shared settings across development, production and
test configurations.  Most values can be overridden via environment
variables defined in `.env`, including payment provider credentials,
the public callback base URL and the default commission policy.
"""

import os
from pathlib import Path
from datetime import timedelta
from dotenv import load_dotenv

from celery.schedules import crontab

# Root of the project directory
BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(os.path.join(BASE_DIR, ".env"))

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure")
DEBUG = os.getenv("DJANGO_DEBUG", "True") == "True"

DJANGO_ALLOWED_HOSTS = os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1")
ALLOWED_HOSTS = [h.strip() for h in DJANGO_ALLOWED_HOSTS.split(",") if h.strip()]

EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
EMAIL_HOST = os.getenv("EMAIL_HOST", "")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = os.getenv("EMAIL_USE_TLS", "True") == "True"
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", EMAIL_HOST_USER or "no-reply@example.com")
# Receives payout failure alerts
PLATFORM_ADMIN_EMAIL = os.getenv("PLATFORM_ADMIN_EMAIL", DEFAULT_FROM_EMAIL)

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

# Application definition
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third-party apps
    "rest_framework",
    "corsheaders",
    "django_celery_beat",
    "drf_spectacular",
    "drf_spectacular_sidecar",

    # Local apps
    "events",
    "payments",
    "bookings",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",  # must be first for CORS
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "eventpro.urls"
ASGI_APPLICATION = "eventpro.asgi.application"

# Database configuration: default to PostgreSQL
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("POSTGRES_DB", "eventpro"),
        "USER": os.getenv("POSTGRES_USER", "eventpro"),
        "PASSWORD": os.getenv("POSTGRES_PASSWORD", "eventpro_password"),
        "HOST": os.getenv("POSTGRES_HOST", "localhost"),
        "PORT": os.getenv("POSTGRES_PORT", "5432"),
        "CONN_MAX_AGE": 60,
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Redis configuration used for cache and Celery
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.redis.RedisCache",
        "LOCATION": REDIS_URL,
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator", "OPTIONS": {"min_length": 8}},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "Africa/Nairobi"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# Django REST Framework configuration
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",  # optional, for browsable API login
    ],
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": os.getenv("DRF_THROTTLE_ANON", "30/min"),
        "user": os.getenv("DRF_THROTTLE_USER", "100/min"),
    },
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "EventPro Booking API",
    "DESCRIPTION": "Ticket booking, payment reconciliation and provider webhooks.",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SERVE_PERMISSIONS": ["rest_framework.permissions.AllowAny"],
    "COMPONENT_SPLIT_REQUEST": True,
    "SECURITY": [{"bearerAuth": []}],
    "COMPONENTS": {
        "securitySchemes": {
            "bearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
            }
        }
    },
}

CSRF_TRUSTED_ORIGINS = [
    o.strip() for o in os.getenv("CSRF_TRUSTED_ORIGINS", "").split(",") if o.strip()
]

SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

# CORS configuration
CORS_ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",") if o.strip()
]
CORS_ALLOW_CREDENTIALS = True

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173/")

# Simple JWT configuration; token lifetimes read from environment
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=int(os.getenv("SIMPLE_JWT_ACCESS_LIFETIME_MIN", "30"))),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=int(os.getenv("SIMPLE_JWT_REFRESH_LIFETIME_DAYS", "7"))),
    "AUTH_HEADER_TYPES": ("Bearer",),
}

# --- Payments ---
# Public base URL the providers call back on (e.g. https://api.example.com)
PAYMENTS_CALLBACK_BASE_URL = os.getenv("PAYMENTS_CALLBACK_BASE_URL", "http://localhost:8000").rstrip("/")
# Optional shared secret appended to callback URLs as ?token=...
PAYMENTS_WEBHOOK_TOKEN = os.getenv("PAYMENTS_WEBHOOK_TOKEN", "")

PAYMENT_GATEWAYS = {
    "mpesa": {
        "CONSUMER_KEY": os.getenv("MPESA_CONSUMER_KEY", ""),
        "CONSUMER_SECRET": os.getenv("MPESA_CONSUMER_SECRET", ""),
        "SHORTCODE": os.getenv("MPESA_SHORTCODE", ""),
        "PASSKEY": os.getenv("MPESA_PASSKEY", ""),
        "ENVIRONMENT": os.getenv("MPESA_ENVIRONMENT", "sandbox"),
        "CALLBACK_URL": os.getenv(
            "MPESA_CALLBACK_URL", f"{PAYMENTS_CALLBACK_BASE_URL}/api/payments/mpesa/callback/"
        ),
        # B2C organizer payouts
        "B2C_SHORTCODE": os.getenv("MPESA_B2C_SHORTCODE", ""),
        "B2C_INITIATOR_NAME": os.getenv("MPESA_B2C_INITIATOR_NAME", ""),
        "B2C_SECURITY_CREDENTIAL": os.getenv("MPESA_B2C_SECURITY_CREDENTIAL", ""),
        "PAYOUT_RESULT_URL": os.getenv(
            "MPESA_PAYOUT_RESULT_URL", f"{PAYMENTS_CALLBACK_BASE_URL}/api/payments/mpesa/payout-callback/"
        ),
    },
    "pesapal": {
        "CONSUMER_KEY": os.getenv("PESAPAL_CONSUMER_KEY", ""),
        "CONSUMER_SECRET": os.getenv("PESAPAL_CONSUMER_SECRET", ""),
        "ENVIRONMENT": os.getenv("PESAPAL_ENVIRONMENT", "production"),
        "IPN_URL": os.getenv("PESAPAL_IPN_URL", f"{PAYMENTS_CALLBACK_BASE_URL}/api/payments/pesapal/ipn/"),
        "IPN_ID": os.getenv("PESAPAL_IPN_ID", ""),
        # Where the buyer's browser lands after the hosted checkout
        "RETURN_URL": os.getenv("PESAPAL_RETURN_URL", f"{FRONTEND_URL.rstrip('/')}/checkout/complete"),
        "CURRENCY": os.getenv("PESAPAL_CURRENCY", "KES"),
    },
}

# --- Bookings ---
BOOKINGS_MAX_TICKETS_PER_BOOKING = int(os.getenv("BOOKINGS_MAX_TICKETS_PER_BOOKING", "10"))
BOOKINGS_NOTIFIER = os.getenv("BOOKINGS_NOTIFIER", "bookings.notifications.EmailTicketNotifier")
# Countdown (seconds) before each status poll; a few short waits, then longer ones.
BOOKINGS_POLL_SCHEDULE = {
    "mpesa": [3, 3, 5, 5, 15, 30, 60, 120],
    "pesapal": [30, 30, 60, 60, 120, 300, 600, 900],
}

COMMISSION_DEFAULTS = {
    "PLATFORM_FEE_PERCENTAGE": os.getenv("COMMISSION_PLATFORM_FEE_PERCENTAGE", "0.10"),
    "MINIMUM_FEE": os.getenv("COMMISSION_MINIMUM_FEE", "0"),
    "MAXIMUM_FEE": os.getenv("COMMISSION_MAXIMUM_FEE", "1000"),
    "IS_ACTIVE": os.getenv("COMMISSION_IS_ACTIVE", "True") == "True",
}

# Celery configuration
CELERY_BROKER_URL = REDIS_URL
CELERY_RESULT_BACKEND = REDIS_URL
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    "reconcile-processing-bookings": {
        "task": "bookings.tasks.reconcile_processing_bookings",
        "schedule": crontab(minute="*/10"),
    },
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {"console": {"class": "logging.StreamHandler", "formatter": "verbose"}},
    "loggers": {
        "bookings": {"handlers": ["console"], "level": os.getenv("BOOKINGS_LOG_LEVEL", "INFO")},
        "payments": {"handlers": ["console"], "level": os.getenv("PAYMENTS_LOG_LEVEL", "INFO")},
        "events": {"handlers": ["console"], "level": "INFO"},
    },
}

# Security headers and cookie defaults
SECURE_CONTENT_TYPE_NOSNIFF = True
SESSION_COOKIE_SECURE = False  # Should be True in production
CSRF_COOKIE_SECURE = False     # Should be True in production
