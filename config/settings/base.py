"""Base settings for all environments.

This configuration file defines the common settings used in development,
test and production. Values come from environment variables; a local
`.env` file is loaded first when present. Environment-specific overrides
live in `dev.py`, `prod.py` and `test.py`.
"""

import os
from pathlib import Path

import structlog
from django.core.exceptions import ImproperlyConfigured  # type: ignore
from dotenv import load_dotenv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(BASE_DIR / '.env')


def get_env(var_name: str, default=None, required: bool = False):
    value = os.environ.get(var_name, default)
    if required and value in (None, ''):
        raise ImproperlyConfigured(f"Missing required environment variable: {var_name}")
    return value


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = get_env('DJANGO_SECRET_KEY', 'replace-me-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = False

ALLOWED_HOSTS: list[str] = get_env('DJANGO_ALLOWED_HOSTS', '*').split(',')

# Application definition

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    # Third‑party apps
    'rest_framework',
    # Domain apps
    'apps.bookings',
    'apps.finances',
    'apps.loyalty',
    'apps.notifications',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
# https://docs.djangoproject.com/en/5.1/ref/settings/#databases
# The overlap exclusion constraint is only installed on PostgreSQL.

DATABASES = {
    'default': {
        'ENGINE': get_env('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': get_env('DB_NAME', BASE_DIR / 'db.sqlite3'),
        'USER': get_env('DB_USER', ''),
        'PASSWORD': get_env('DB_PASSWORD', ''),
        'HOST': get_env('DB_HOST', ''),
        'PORT': get_env('DB_PORT', ''),
    }
}

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Email defaults
DEFAULT_FROM_EMAIL = get_env('DEFAULT_FROM_EMAIL', 'no-reply@innkeep.local')

# Django Rest Framework
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'EXCEPTION_HANDLER': 'shared.infrastructure.exception_handler.domain_exception_handler',
}

# Celery configuration (Broker and Result backend handled in environment)
CELERY_BROKER_URL = get_env('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = get_env('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_ACKS_LATE = True

# ============================================================================
# BOOKING CORE
# ============================================================================

# Free cancellation ends this many hours before the check-in moment
BOOKING_CANCELLATION_WINDOW_HOURS = int(get_env('BOOKING_CANCELLATION_WINDOW_HOURS', 24))
# Local check-in time, HH:MM in UTC
BOOKING_CHECK_IN_TIME = get_env('BOOKING_CHECK_IN_TIME', '00:00')
# Share of the captured amount refunded to guests cancelling late
LATE_CANCELLATION_REFUND_PERCENT = int(get_env('LATE_CANCELLATION_REFUND_PERCENT', 50))

LOYALTY_POINTS_PER_DOLLAR = int(get_env('LOYALTY_POINTS_PER_DOLLAR', 1))
LOYALTY_POINTS_TO_DOLLAR_RATIO = int(get_env('LOYALTY_POINTS_TO_DOLLAR_RATIO', 100))
LOYALTY_MAX_REDEMPTION_PERCENTAGE = get_env('LOYALTY_MAX_REDEMPTION_PERCENTAGE', '0.5')

PAYMENT_CURRENCY = get_env('PAYMENT_CURRENCY', 'USD')
STRIPE_SECRET_KEY = get_env('STRIPE_SECRET_KEY', '')
STRIPE_WEBHOOK_SECRET = get_env('STRIPE_WEBHOOK_SECRET', '')
STRIPE_API_BASE = get_env('STRIPE_API_BASE', 'https://api.stripe.com/v1')
PAYMENT_GATEWAY_TIMEOUT = float(get_env('PAYMENT_GATEWAY_TIMEOUT', 10))
PAYMENT_WEBHOOK_TOLERANCE = int(get_env('PAYMENT_WEBHOOK_TOLERANCE', 300))
# Pending intents older than this are synced from the gateway
PAYMENT_RECONCILE_AFTER_MINUTES = int(get_env('PAYMENT_RECONCILE_AFTER_MINUTES', 15))

NOTIFICATION_MAX_ATTEMPTS = int(get_env('NOTIFICATION_MAX_ATTEMPTS', 5))

# ============================================================================
# LOGGING
# ============================================================================

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOG_LEVEL = get_env('LOG_LEVEL', 'INFO')

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "structlog.stdlib.ProcessorFormatter",
            "processor": structlog.processors.JSONRenderer(),
            "foreign_pre_chain": [
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
            ],
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "level": LOG_LEVEL,
        }
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "shared": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "apps.finances": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}
