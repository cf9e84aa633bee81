"""
Domain Error Taxonomy

Every failure the core reports upward is one of these. Validation, not-found,
conflict and forbidden errors are raised before any state is written, so the
surrounding unit of work rolls back with nothing to undo.
"""


class DomainError(Exception):
    """Base class for errors raised by the booking core"""

    code = 'domain_error'

    def __init__(self, message: str = '', **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {'code': self.code, 'message': self.message}
        if self.details:
            payload['details'] = {key: str(value) for key, value in self.details.items()}
        return payload


class ValidationError(DomainError):
    """Bad shape or out-of-range input"""
    code = 'validation_error'


class NotFoundError(DomainError):
    code = 'not_found'


class ConflictError(DomainError):
    """Overlapping dates, duplicate payment intent, illegal transition"""
    code = 'conflict'


class IllegalTransitionError(ConflictError):
    """A (state, event) pair that the booking state machine does not allow"""
    code = 'illegal_transition'

    def __init__(self, status, event):
        status_value = getattr(status, 'value', status)
        event_value = getattr(event, 'value', event)
        super().__init__(
            f"Cannot {event_value} a booking in status {status_value}",
            status=status_value,
            event=event_value,
        )
        self.status = status
        self.event = event


class ForbiddenError(DomainError):
    """Ownership, role or cancellation-window violation"""
    code = 'forbidden'


class ExternalGatewayError(DomainError):
    """
    Payment processor failure or timeout

    outcome_unknown is True when the request may have reached the gateway
    (read timeout, 5xx, dropped connection). Such calls must be reconciled or
    retried with the same idempotency key, never blindly re-issued.
    """
    code = 'gateway_error'

    def __init__(self, message: str = '', *, outcome_unknown: bool = False, **details):
        super().__init__(message, **details)
        self.outcome_unknown = outcome_unknown


class SignatureError(DomainError):
    """Webhook payload failed signature verification"""
    code = 'invalid_signature'
