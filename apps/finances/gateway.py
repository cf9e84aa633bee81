"""
Payment Gateway Integration

PaymentGateway is the narrow interface the reconciler talks to.
StripeGateway implements it over the Stripe REST API with `requests`:
form-encoded bodies, amounts in minor units, and an Idempotency-Key header
on every mutating call so a retried request never charges or refunds twice.

Gateway calls are never made while database locks are held.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging

import requests

from shared.domain.exceptions import ExternalGatewayError
from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)

STRIPE_API_BASE = 'https://api.stripe.com/v1/'


@dataclass(frozen=True)
class GatewayIntent:
    id: str
    status: str
    amount: Money
    client_secret: str = ''
    metadata: dict = field(default_factory=dict)
    last_error: str = ''

    @property
    def succeeded(self) -> bool:
        return self.status == 'succeeded'

    @property
    def failed(self) -> bool:
        """Canceled, or sent back for a new payment method after an attempt"""
        if self.status == 'canceled':
            return True
        return self.status == 'requires_payment_method' and bool(self.last_error)


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    status: str
    amount: Money
    intent_id: str = ''

    @property
    def succeeded(self) -> bool:
        return self.status in ('succeeded', 'pending')


class PaymentGateway(ABC):

    @abstractmethod
    def create_intent(self, amount: Money, metadata: dict, idempotency_key: str) -> GatewayIntent:
        pass

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        pass

    @abstractmethod
    def refund(self, intent_id: str, amount: Money | None, idempotency_key: str,
               reason: str = '') -> GatewayRefund:
        pass


class StripeGateway(PaymentGateway):
    """Stripe PaymentIntents / Refunds over HTTPS"""

    def __init__(self, secret_key: str, api_base: str = STRIPE_API_BASE, timeout: float = 10,
                 session: requests.Session | None = None):
        if not secret_key:
            raise ValueError("Stripe secret key is not configured")
        self.api_base = api_base if api_base.endswith('/') else api_base + '/'
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {secret_key}',
            'Accept': 'application/json',
        })

    def _request(self, method: str, path: str, data: dict | None = None,
                 idempotency_key: str | None = None) -> dict:
        headers = {}
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key

        try:
            response = self.session.request(
                method,
                f"{self.api_base}{path}",
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectTimeout as e:
            logger.error(f"Stripe connect timeout on {method} {path}: {e}")
            raise ExternalGatewayError(f"Payment gateway unreachable: {e}", path=path)
        except requests.exceptions.Timeout as e:
            logger.error(f"Stripe read timeout on {method} {path}: {e}")
            raise ExternalGatewayError(
                f"Payment gateway timed out: {e}", outcome_unknown=True, path=path
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error talking to Stripe on {method} {path}: {e}")
            raise ExternalGatewayError(
                f"Payment gateway connection error: {e}", outcome_unknown=True, path=path
            )

        if response.status_code >= 500:
            logger.error(f"Stripe returned {response.status_code} on {method} {path}")
            raise ExternalGatewayError(
                f"Payment gateway error (HTTP {response.status_code})",
                outcome_unknown=True,
                path=path,
            )

        try:
            body = response.json()
        except ValueError:
            raise ExternalGatewayError(
                f"Invalid response from payment gateway (HTTP {response.status_code})",
                outcome_unknown=response.ok,
                path=path,
            )

        if not response.ok:
            error = body.get('error', {}) if isinstance(body, dict) else {}
            message = error.get('message', 'Unknown error')
            logger.error(f"Stripe API returned an error on {method} {path}: {message}")
            raise ExternalGatewayError(
                f"Payment gateway rejected the request: {message}",
                path=path,
                gateway_code=error.get('code', ''),
            )
        return body

    @staticmethod
    def _intent_from(body: dict) -> GatewayIntent:
        last_error = body.get('last_payment_error') or {}
        return GatewayIntent(
            id=body['id'],
            status=body.get('status', ''),
            amount=Money.from_minor_units(body.get('amount', 0), body.get('currency', 'usd')),
            client_secret=body.get('client_secret') or '',
            metadata=body.get('metadata') or {},
            last_error=last_error.get('message', ''),
        )

    def create_intent(self, amount, metadata, idempotency_key):
        logger.info(f"Creating Stripe payment intent for {amount}")
        data = {
            'amount': amount.to_minor_units(),
            'currency': amount.currency.lower(),
            'automatic_payment_methods[enabled]': 'true',
        }
        for key, value in metadata.items():
            data[f'metadata[{key}]'] = str(value)

        body = self._request('POST', 'payment_intents', data, idempotency_key)
        intent = self._intent_from(body)
        logger.info(f"Stripe payment intent created: {intent.id}")
        return intent

    def retrieve_intent(self, intent_id):
        return self._intent_from(self._request('GET', f'payment_intents/{intent_id}'))

    def refund(self, intent_id, amount, idempotency_key, reason=''):
        logger.info(f"Refunding Stripe payment intent {intent_id}, amount {amount or 'full'}")
        data = {
            'payment_intent': intent_id,
            'reason': 'requested_by_customer',
        }
        if amount is not None:
            data['amount'] = amount.to_minor_units()
        if reason:
            data['metadata[reason]'] = reason

        body = self._request('POST', 'refunds', data, idempotency_key)
        refund = GatewayRefund(
            id=body['id'],
            status=body.get('status', ''),
            amount=Money.from_minor_units(body.get('amount', 0), body.get('currency', 'usd')),
            intent_id=body.get('payment_intent') or intent_id,
        )
        if not refund.succeeded:
            raise ExternalGatewayError(
                f"Refund {refund.id} was not accepted: {refund.status}",
                refund_id=refund.id,
            )
        return refund
