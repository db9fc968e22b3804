import uuid

from django.db import models


class Order(models.Model):
    ORDER_TYPES = [
        ("darshan", "Darshan"),
        ("puja", "Puja"),
        ("prasad", "Prasad"),
        ("product", "Product"),
        ("event", "Event"),
    ]
    STATUS = [
        ("pending", "Pending"),
        ("confirmed", "Confirmed"),
        ("processing", "Processing"),
        ("ready", "Ready"),
        ("shipped", "Shipped"),
        ("completed", "Completed"),
        ("cancelled", "Cancelled"),
        ("refunded", "Refunded"),
    ]
    PAYMENT_STATUS = [
        ("pending", "Pending"),
        ("paid", "Paid"),
        ("failed", "Failed"),
        ("refunded", "Refunded"),
    ]
    FULFILLMENT_TYPES = [
        ("pickup", "Pickup"),
        ("delivery", "Delivery"),
        ("in_person", "In person"),
        ("digital", "Digital"),
    ]
    DELIVERY_TYPES = [("standard", "Standard"), ("express", "Express")]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.UUIDField(default=uuid.uuid4, unique=True, db_index=True)
    user_id = models.UUIDField(db_index=True)
    temple_id = models.UUIDField(blank=True, null=True, db_index=True)
    address_id = models.UUIDField(blank=True, null=True, db_index=True)

    order_type = models.CharField(max_length=16, choices=ORDER_TYPES)
    status = models.CharField(max_length=16, choices=STATUS, default="pending", db_index=True)

    scheduled_date = models.DateField(blank=True, null=True)
    scheduled_timestamp = models.DateTimeField(blank=True, null=True)
    fulfillment_type = models.CharField(max_length=16, choices=FULFILLMENT_TYPES, blank=True, null=True)

    # money => NUMERIC, built from decimal strings
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    convenience_fee = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    currency = models.CharField(max_length=10, blank=True, null=True)

    payment_status = models.CharField(max_length=16, choices=PAYMENT_STATUS, default="pending")
    payment_method = models.CharField(max_length=32, blank=True, null=True)
    payment_id = models.CharField(max_length=64, blank=True, null=True)
    paid_at = models.DateTimeField(blank=True, null=True)

    contact_name = models.CharField(max_length=255, blank=True, null=True)
    contact_phone = models.CharField(max_length=32, blank=True, null=True)
    contact_email = models.CharField(max_length=255, blank=True, null=True)
    shipping_address = models.TextField(blank=True, null=True)
    delivery_type = models.CharField(max_length=16, choices=DELIVERY_TYPES, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.order_number} ({self.order_type}, {self.status})"

    def as_dict(self) -> dict:
        def money(value):
            return None if value is None else str(value)

        return {
            "id": str(self.id),
            "order_number": str(self.order_number),
            "user_id": str(self.user_id),
            "temple_id": str(self.temple_id) if self.temple_id else None,
            "address_id": str(self.address_id) if self.address_id else None,
            "order_type": self.order_type,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "subtotal": money(self.subtotal),
            "discount_amount": money(self.discount_amount),
            "convenience_fee": money(self.convenience_fee),
            "tax_amount": money(self.tax_amount),
            "total_amount": money(self.total_amount),
            "currency": self.currency,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class OrderItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    item_type = models.CharField(max_length=32, db_index=True)
    item_id = models.UUIDField(blank=True, null=True)
    item_name = models.CharField(max_length=255, blank=True, null=True)
    item_description = models.TextField(blank=True, null=True)
    item_image_url = models.CharField(max_length=512, blank=True, null=True)

    product_id = models.UUIDField(blank=True, null=True, db_index=True)
    puja_id = models.UUIDField(blank=True, null=True, db_index=True)
    prasad_id = models.UUIDField(blank=True, null=True, db_index=True)
    darshan_id = models.UUIDField(blank=True, null=True, db_index=True)

    quantity = models.PositiveIntegerField(blank=True, null=True)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    total_price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    item_details = models.JSONField(blank=True, null=True)
    status = models.CharField(max_length=32, blank=True, null=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.item_type}: {self.item_name or self.item_id or self.pk}"


class OrderStatusHistory(models.Model):
    """Append-only audit trail of order status changes."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="status_history")
    status = models.CharField(max_length=16, db_index=True)
    previous_status = models.CharField(max_length=16, blank=True, null=True, db_index=True)
    notes = models.TextField(blank=True, null=True)
    location = models.CharField(max_length=255, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at",)
        verbose_name_plural = "order status history"

    def __str__(self):
        return f"{self.order_id}: {self.previous_status or '-'} -> {self.status}"
