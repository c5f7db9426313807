"""
Tests for the health check endpoint.
"""

from unittest.mock import patch

import pytest
from django.urls import reverse


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client, settings):
        settings.STRIPE_SECRET_KEY = "sk_test_123"

        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "stripe": "configured",
        }

    def test_stripe_not_configured(self, client, settings):
        settings.STRIPE_SECRET_KEY = ""

        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["stripe"] == "not_configured"

    def test_database_down_is_503(self, client):
        with patch("core.views._database_ok", return_value=False):
            response = client.get(reverse("health_check"))

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_cache_down_still_200(self, client):
        with patch("core.views._cache_ok", return_value=False):
            response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"
