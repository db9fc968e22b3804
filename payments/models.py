import uuid

from django.db import models
from django.utils import timezone


SUCCESS_STATUSES = ("paid", "captured")

# Forward order of the payment lifecycle; "failed" is handled separately.
_STATUS_RANK = {"created": 0, "authorized": 1, "paid": 2, "captured": 3, "refunded": 4}


class PaymentOrderQuerySet(models.QuerySet):
    def claim_order_pointer(self, pk, order_id) -> bool:
        """Set ``app_order_id`` only if nobody has set it yet. True for the winner."""
        return bool(
            self.filter(pk=pk, app_order_id__isnull=True).update(
                app_order_id=order_id, updated_at=timezone.now()
            )
        )

    def stage_pending_order(self, pk, data: dict) -> bool:
        """Store the pending order snapshot once; later calls never clobber it."""
        return bool(
            self.filter(pk=pk, staged_order__isnull=True).update(
                staged_order=data, updated_at=timezone.now()
            )
        )

    def decline_duplicate_booking(self, pk) -> bool:
        """Record that the duplicate-booking guard refused the order, unless one was already created."""
        return bool(
            self.filter(pk=pk, app_order_id__isnull=True, booking_declined_at__isnull=True).update(
                booking_declined_at=timezone.now(), updated_at=timezone.now()
            )
        )

    def awaiting_materialization(self):
        return self.filter(
            status__in=SUCCESS_STATUSES,
            app_order_id__isnull=True,
            staged_order__isnull=False,
            booking_declined_at__isnull=True,
        )


class PaymentOrder(models.Model):
    STATUS = [
        ("created", "Created"),
        ("authorized", "Authorized"),
        ("paid", "Paid"),
        ("captured", "Captured"),
        ("failed", "Failed"),
        ("refunded", "Refunded"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=64, db_index=True)

    gateway_order_id = models.CharField(max_length=64, unique=True)
    gateway_payment_id = models.CharField(max_length=64, blank=True, null=True, unique=True)
    signature = models.CharField(max_length=128, blank=True, null=True)

    status = models.CharField(max_length=16, choices=STATUS, default="created", db_index=True)
    amount = models.PositiveBigIntegerField()  # minor units (paise)
    currency = models.CharField(max_length=3, default="INR")
    receipt = models.CharField(max_length=64, blank=True, null=True)
    notes = models.JSONField(blank=True, null=True)

    customer_email = models.CharField(max_length=255, blank=True, null=True)
    customer_phone = models.CharField(max_length=32, blank=True, null=True)

    # caller-supplied at checkout; reconciliation state lives in the columns below
    metadata = models.JSONField(blank=True, null=True)

    app_order_id = models.UUIDField(blank=True, null=True, unique=True)
    staged_order = models.JSONField(blank=True, null=True)
    gateway_entity = models.JSONField(blank=True, null=True)

    verified_at = models.DateTimeField(blank=True, null=True)
    authorized_at = models.DateTimeField(blank=True, null=True)
    paid_at = models.DateTimeField(blank=True, null=True)
    captured_at = models.DateTimeField(blank=True, null=True)
    failed_at = models.DateTimeField(blank=True, null=True)
    expires_at = models.DateTimeField(blank=True, null=True)
    booking_declined_at = models.DateTimeField(blank=True, null=True)
    failure_reason = models.CharField(max_length=255, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PaymentOrderQuerySet.as_manager()

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.gateway_order_id} ({self.status})"

    @property
    def is_successful(self) -> bool:
        return self.status in SUCCESS_STATUSES

    def can_transition_to(self, new_status: str) -> bool:
        """Forward-only lifecycle, except that a failed attempt may be retried."""
        current = self.status
        if new_status == current:
            return True
        if new_status == "failed":
            return current in ("created", "authorized")
        if current == "failed":
            return new_status in ("authorized", "paid", "captured")
        return _STATUS_RANK[new_status] > _STATUS_RANK[current]

    def as_dict(self) -> dict:
        def ts(value):
            return value.isoformat() if value else None

        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "receipt": self.receipt,
            "notes": self.notes,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "metadata": self.metadata,
            "app_order_id": str(self.app_order_id) if self.app_order_id else None,
            "has_staged_order": self.staged_order is not None,
            "verified_at": ts(self.verified_at),
            "authorized_at": ts(self.authorized_at),
            "paid_at": ts(self.paid_at),
            "captured_at": ts(self.captured_at),
            "failed_at": ts(self.failed_at),
            "expires_at": ts(self.expires_at),
            "booking_declined_at": ts(self.booking_declined_at),
            "failure_reason": self.failure_reason,
            "created_at": ts(self.created_at),
            "updated_at": ts(self.updated_at),
        }
