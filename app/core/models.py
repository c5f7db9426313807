"""
Core base model providing common fields for all domain models.

Base Classes:
    BaseModel: Abstract model with timestamps (created_at, updated_at)

For mixins (UUIDPrimaryKeyMixin), see core.model_mixins.

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class ProcessedWebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
        event_id = models.CharField(max_length=255, unique=True)
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model providing creation and modification timestamps.

    Fields:
        created_at: Set when the row is first inserted
        updated_at: Refreshed on every save()

    Note:
        ``updated_at`` is only refreshed by save(). Bulk ``update()`` calls
        must set it explicitly when it matters.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,  # Sweeps and reports filter on age
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"
