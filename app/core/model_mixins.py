"""
Model mixins shared across apps.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Payment(UUIDPrimaryKeyMixin, BaseModel):
        amount = models.PositiveBigIntegerField()

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    IDs are non-guessable and can be generated before the insert, which
    lets a service hand the id to an external system (for example as part
    of an idempotency key) before the row exists.

    Usage:
        payment_id = uuid.uuid4()
        intent = gateway.create_payment_intent(..., idempotency_key=f"create:{payment_id}")
        Payment.objects.create(id=payment_id, ...)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True
