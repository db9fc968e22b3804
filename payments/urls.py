from django.urls import path
from . import views
from .webhook import razorpay_webhook
app_name = "payments"
urlpatterns = [
    path("orders", views.payment_orders_view, name="orders"),
    path("orders/<str:gateway_order_id>", views.payment_order_detail_view, name="order_detail"),
    path("verify", views.verify_payment_view, name="verify"),
    path("capture", views.capture_payment_view, name="capture"),
    path("webhook/razorpay", razorpay_webhook, name="razorpay_webhook"),
]
