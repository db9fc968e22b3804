from django.apps import AppConfig
from django.conf import settings


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    def ready(self):
        # Secrets are read once; views reach the clients through this config.
        from .integrations.bookings import BookingServiceClient
        from .integrations.razorpay_gateway import RazorpayClient, load_secrets

        timeout = getattr(settings, "EXTERNAL_HTTP_TIMEOUT", 10.0)
        self.secrets = load_secrets(settings)
        self.gateway = RazorpayClient(self.secrets, base_url=settings.RAZORPAY_BASE_URL, timeout=timeout)
        self.bookings = BookingServiceClient(getattr(settings, "EVENT_BOOKING_SERVICE_URL", ""), timeout=timeout)
