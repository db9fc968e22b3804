import hashlib
import hmac
import json
import uuid
from unittest.mock import Mock, patch

from django.apps import apps
from django.test import TestCase
from django.urls import reverse

from orders.models import Order, OrderItem, OrderStatusHistory

from .integrations.bookings import BookingServiceClient
from .integrations.razorpay_gateway import RazorpaySecrets
from .models import PaymentOrder

KEY_SECRET = "rzp_test_secret"
USER_ID = str(uuid.uuid4())


def checkout_signature(order_id, payment_id, secret=KEY_SECRET):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class VerifyPaymentTests(TestCase):
    def setUp(self):
        self.po = PaymentOrder.objects.create(
            user_id=USER_ID, gateway_order_id="order_V1", amount=50000, currency="INR"
        )
        self.bookings = Mock(spec=BookingServiceClient)
        self.bookings.enabled = True
        self.bookings.list_user_bookings.return_value = []
        patcher = patch.object(apps.get_app_config("payments"), "bookings", self.bookings)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _body(self, payment_id="pay_V1", **overrides):
        body = {
            "razorpay_order_id": "order_V1",
            "razorpay_payment_id": payment_id,
            "razorpay_signature": checkout_signature("order_V1", payment_id),
            "userId": USER_ID,
            "orderType": "puja",
            "totalAmount": "500.00",
            "orderItems": [
                {"itemType": "puja", "pujaId": str(uuid.uuid4()), "quantity": 1, "unitPrice": "300.00", "totalPrice": "300.00"},
                {"itemType": "prasad", "prasadId": str(uuid.uuid4()), "quantity": 2, "unitPrice": "100.00", "totalPrice": "200.00"},
            ],
        }
        body.update(overrides)
        return body

    def _post(self, body, **extra):
        return self.client.post(
            reverse("payments:verify"), data=json.dumps(body), content_type="application/json", **extra
        )

    def test_happy_path_creates_single_order(self):
        resp = self._post(self._body())
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertTrue(data["order_created"])

        order = Order.objects.get()
        self.assertEqual(data["app_order_id"], str(order.pk))
        self.assertEqual(order.payment_status, "paid")
        self.assertEqual(OrderItem.objects.filter(order=order).count(), 2)
        history = OrderStatusHistory.objects.get(order=order)
        self.assertIsNone(history.previous_status)

        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "paid")
        self.assertEqual(self.po.gateway_payment_id, "pay_V1")
        self.assertEqual(self.po.app_order_id, order.pk)
        self.assertIsNotNone(self.po.verified_at)

    def test_repeated_verify_is_idempotent(self):
        first = self._post(self._body()).json()
        second = self._post(self._body())
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()["app_order_id"], first["app_order_id"])
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderItem.objects.count(), 2)

    def test_invalid_signature_changes_nothing(self):
        body = self._body()
        body["razorpay_signature"] = "0" * 64
        with self.assertLogs("payments.views", level="WARNING"):
            resp = self._post(body)
        self.assertEqual(resp.status_code, 400)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "created")
        self.assertIsNone(self.po.staged_order)
        self.assertEqual(Order.objects.count(), 0)

    def test_missing_fields(self):
        resp = self._post({"razorpay_order_id": "order_V1"})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("razorpay_signature", resp.json()["error"])

    def test_invalid_json(self):
        resp = self.client.post(reverse("payments:verify"), data="{not json", content_type="application/json")
        self.assertEqual(resp.status_code, 400)

    def test_unknown_order(self):
        body = self._body()
        body["razorpay_order_id"] = "order_missing"
        body["razorpay_signature"] = checkout_signature("order_missing", "pay_V1")
        resp = self._post(body)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["searched_id"], "order_missing")

    def test_missing_secret_is_server_error(self):
        cfg = apps.get_app_config("payments")
        with patch.object(cfg, "secrets", RazorpaySecrets("rzp_test_key", "", "whsec_test")):
            resp = self._post(self._body())
        self.assertEqual(resp.status_code, 500)

    def test_invalid_user_rejected_without_mutation(self):
        resp = self._post(self._body(userId="12345"))
        self.assertEqual(resp.status_code, 400)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "created")
        self.assertIsNone(self.po.gateway_payment_id)

    def test_missing_order_type_rejected(self):
        resp = self._post(self._body(orderType=None))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(Order.objects.count(), 0)

    def test_different_payment_after_success_conflicts(self):
        self._post(self._body())
        resp = self._post(self._body(payment_id="pay_OTHER"))
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(Order.objects.count(), 1)

    def test_retry_after_failed_attempt(self):
        self.po.status = "failed"
        self.po.gateway_payment_id = "pay_FAILED"
        self.po.failure_reason = "Card declined"
        self.po.save()

        resp = self._post(self._body(payment_id="pay_RETRY"))
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "paid")
        self.assertEqual(self.po.gateway_payment_id, "pay_RETRY")
        self.assertIsNone(self.po.failure_reason)
        self.assertEqual(Order.objects.count(), 1)

    def test_captured_by_webhook_first_stays_captured(self):
        self.po.status = "captured"
        self.po.save()
        resp = self._post(self._body())
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "captured")
        self.assertEqual(Order.objects.count(), 1)

    def test_access_token_forwarded_to_bookings(self):
        booking = {"preferredDate": "2026-01-10", "preferredTimeSlot": "morning"}
        resp = self._post(
            self._body(orderType="event", orderItems=[], eventBookingData=booking),
            HTTP_AUTHORIZATION="Bearer user-token",
        )
        self.assertEqual(resp.status_code, 200)
        self.bookings.list_user_bookings.assert_called_once_with(USER_ID, access_token="Bearer user-token")
        self.assertEqual(self.bookings.create_booking.call_args[1]["access_token"], "Bearer user-token")

    def test_duplicate_event_booking_creates_no_order(self):
        self.bookings.list_user_bookings.return_value = [
            {"preferredDate": "2026-01-10", "preferredTimeSlot": "morning"}
        ]
        booking = {"preferredDate": ["2026-01-10"], "preferredTimeSlot": {"2026-01-10": "morning"}}
        resp = self._post(self._body(orderType="event", orderItems=[], eventBookingData=booking))

        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertFalse(data["order_created"])
        self.assertIsNone(data["app_order_id"])
        self.assertIn("webhook", data["message"])
        self.assertEqual(Order.objects.count(), 0)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "paid")

    def test_materialization_crash_reports_state_changed(self):
        with patch("payments.views.materialize_order", side_effect=RuntimeError("db gone")):
            resp = self._post(self._body())
        self.assertEqual(resp.status_code, 500)
        self.assertTrue(resp.json()["state_changed"])
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "paid")
        self.assertIsNotNone(self.po.staged_order)

    def test_recording_crash_reports_no_state_change(self):
        with patch("payments.views.record_verified_payment", side_effect=RuntimeError("db gone")):
            resp = self._post(self._body())
        self.assertEqual(resp.status_code, 500)
        self.assertFalse(resp.json()["state_changed"])

    def test_unparseable_schedule_rejected_before_staging(self):
        resp = self._post(self._body(scheduledTimestamp=1767225600))
        self.assertEqual(resp.status_code, 400)
        self.assertIn("scheduledTimestamp", resp.json()["error"])
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "created")
        self.assertIsNone(self.po.staged_order)

        resp = self._post(self._body(scheduledTimestamp="2026-01-01T00:00:00Z"))
        self.assertEqual(resp.status_code, 200)
        order = Order.objects.get()
        self.assertEqual(order.scheduled_timestamp.isoformat(), "2026-01-01T00:00:00+00:00")

    def test_non_numeric_quantity_rejected(self):
        items = [{"itemType": "puja", "quantity": "two", "unitPrice": "500.00", "totalPrice": "500.00"}]
        resp = self._post(self._body(orderItems=items))
        self.assertEqual(resp.status_code, 400)
        self.assertIn("quantity", resp.json()["error"])
        self.assertEqual(Order.objects.count(), 0)
        self.po.refresh_from_db()
        self.assertIsNone(self.po.staged_order)
