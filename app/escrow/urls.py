"""
URL configuration for the escrow app.

All routes are prefixed with /api/v1/payments/ when included in the main
URLconf. The route list is documented in escrow.views.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("escrow.urls")),
    ]
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from escrow.views import (
    PaymentViewSet,
    PayoutAccountRefreshView,
    PayoutAccountView,
    PayoutOnboardingLinkView,
)
from escrow.webhooks.views import stripe_webhook

router = SimpleRouter()
router.register(r"", PaymentViewSet, basename="payment")

app_name = "escrow"

urlpatterns = [
    # Webhook endpoint (no auth, signature verified)
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    # Payout account
    path("payout-account/", PayoutAccountView.as_view(), name="payout-account"),
    path(
        "payout-account/onboarding-link/",
        PayoutOnboardingLinkView.as_view(),
        name="payout-account-onboarding-link",
    ),
    path(
        "payout-account/refresh/",
        PayoutAccountRefreshView.as_view(),
        name="payout-account-refresh",
    ),
    # Payments
    path("", include(router.urls)),
]
