from django.contrib import admin

from .models import Order, OrderItem, OrderStatusHistory


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    readonly_fields = ("status", "previous_status", "notes", "location", "created_at")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "order_type", "status", "payment_status", "total_amount", "currency", "created_at")
    search_fields = ("order_number", "user_id", "payment_id", "contact_email", "contact_phone")
    list_filter = ("order_type", "status", "payment_status", "created_at")
    readonly_fields = ("created_at", "updated_at", "paid_at")
    inlines = [OrderItemInline, OrderStatusHistoryInline]
