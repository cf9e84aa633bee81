"""URL routing for the payments domain."""

from __future__ import annotations

from django.urls import path  # type: ignore

from .views import PaymentWebhookView

urlpatterns = [
    path("webhooks/stripe/", PaymentWebhookView.as_view(), name="payment-webhook"),
]
