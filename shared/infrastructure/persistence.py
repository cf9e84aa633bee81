"""Helpers shared by the Django repositories."""

from contextlib import contextmanager
import logging

from django.db import IntegrityError, NotSupportedError, transaction  # type: ignore

from shared.domain.exceptions import ConflictError

logger = logging.getLogger(__name__)


def lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


@contextmanager
def conflict_on_integrity_error(message: str, **details):
    """Run a write in a savepoint; a violated constraint becomes ConflictError.

    The savepoint keeps the surrounding unit of work usable after the error.
    """
    try:
        with transaction.atomic():
            yield
    except IntegrityError as e:
        logger.info(f"{message}: {e}")
        raise ConflictError(message, **details) from e
