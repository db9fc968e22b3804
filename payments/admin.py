from django.contrib import admin
from .models import PaymentOrder

@admin.register(PaymentOrder)
class PaymentOrderAdmin(admin.ModelAdmin):
    list_display = ("gateway_order_id", "status", "amount", "currency", "user_id", "app_order_id", "created_at", "updated_at")
    search_fields = ("gateway_order_id", "gateway_payment_id", "user_id", "customer_email", "receipt")
    list_filter = ("status", "currency", "created_at")
    readonly_fields = ("created_at", "updated_at", "staged_order", "gateway_entity", "app_order_id", "booking_declined_at")
