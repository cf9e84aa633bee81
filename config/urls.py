"""URL configuration for Innkeep.

The booking core is driven through the message bus; HTTP only carries the
payment gateway's webhook.
"""
from django.urls import path, include  # type: ignore

urlpatterns = [
    path('api/v1/payments/', include('apps.finances.urls')),
]
