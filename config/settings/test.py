"""Test settings: in-memory SQLite, local-memory email, eager Celery."""

from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

STRIPE_SECRET_KEY = 'sk_test_innkeep'
STRIPE_WEBHOOK_SECRET = 'whsec_test_innkeep'
STRIPE_API_BASE = 'https://stripe.invalid/v1'

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
