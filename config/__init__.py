"""Django configuration for the Innkeep booking core.

Settings modules per environment plus the WSGI, ASGI and Celery entry
points.
"""

# Import the Celery application as soon as Django starts so that
# shared tasks bind to it.
from .celery import app as celery_app  # noqa: F401
