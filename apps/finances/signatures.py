"""
Webhook signature verification

The gateway signs each delivery with HMAC-SHA256 over
"<timestamp>.<raw body>" and sends it as

    Stripe-Signature: t=<unix timestamp>,v1=<hex digest>[,v1=<hex digest>...]

Verification and decoding go through the Stripe SDK. Deliveries older than
the tolerance window are rejected as replays.
"""

import hashlib
import hmac
import time

import stripe

from shared.domain.exceptions import SignatureError, ValidationError

SIGNATURE_SCHEME = 'v1'
DEFAULT_TOLERANCE = 300


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a signature header value for a payload, as the gateway does"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},{SIGNATURE_SCHEME}={digest}"


def construct_event(payload: bytes, header: str | None, secret: str,
                    tolerance: int = DEFAULT_TOLERANCE):
    """
    Verify a delivery and decode it into the event

    Raises SignatureError for a missing, invalid or stale signature and
    ValidationError for a signed body that is not an event.
    """
    if not secret:
        raise SignatureError("Webhook secret is not configured")
    if not header:
        raise SignatureError("Missing signature header")

    try:
        event = stripe.Webhook.construct_event(payload, header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureError(f"Invalid webhook signature: {e}")
    except ValueError:
        raise ValidationError("Webhook payload is not valid JSON")

    if 'type' not in event:
        raise ValidationError("Webhook payload is not an event")
    return event
