"""
URL configuration for the escrow payment service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface (read-only escrow views)
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT access/refresh pair
    /api/v1/auth/token/refresh/    - Refresh JWT access token
    /api/v1/payments/              - Escrow payments
        {id}/                      - Payment detail
        {id}/confirm/              - Payer confirms the intent
        {id}/release/              - Payer releases escrow
        {id}/refund/               - Payer requests a refund
        {id}/events/               - Payment audit log
        stats/                     - Per-user totals
        sweeps/...                 - Manual sweep triggers (staff)
        payout-account/...         - Stripe Connect onboarding
        webhooks/stripe/           - Stripe webhook endpoint

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # JWT authentication
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Escrow payments
    path("payments/", include("escrow.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Escrow Admin"
admin.site.site_title = "Escrow Admin Portal"
admin.site.index_title = "Escrow payments"
