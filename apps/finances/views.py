"""Payment gateway webhook endpoint.

The gateway signs the raw request body, so the view hands the bytes and the
signature header to the reconciler untouched. Domain errors become HTTP
responses through the project exception handler: a bad signature is a 400,
which makes the gateway redeliver.
"""

from __future__ import annotations

import structlog
from rest_framework import permissions, status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from apps.finances.application.command_handlers import HandleWebhook
from shared.application.bootstrap import get_services

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"


class PaymentWebhookView(APIView):
    """Receives gateway events. Authenticated by signature, not by session."""

    authentication_classes: list = []
    permission_classes = [permissions.AllowAny]

    def post(self, request, *args, **kwargs):
        payload = request.body
        signature = request.headers.get(SIGNATURE_HEADER)
        log = logger.bind(content_length=len(payload), signed=bool(signature))

        result = get_services().bus.handle_command(HandleWebhook(payload=payload, signature=signature))

        log.info(
            "payments.webhook.handled",
            result=result.status,
            event_type=result.event_type,
            intent_id=result.intent_id,
        )
        return Response({"status": result.status}, status=status.HTTP_200_OK)
