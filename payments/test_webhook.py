import hashlib
import hmac
import json
import uuid
from unittest.mock import Mock, patch

from django.apps import apps
from django.test import TestCase
from django.urls import reverse

from orders.models import Order, OrderItem

from .integrations.bookings import BookingServiceClient, BookingServiceError
from .integrations.razorpay_gateway import RazorpaySecrets
from .models import PaymentOrder
from .services import build_pending_order
from .test_verify import checkout_signature

WEBHOOK_SECRET = "whsec_test"
USER_ID = str(uuid.uuid4())


def staged(**overrides):
    body = {
        "userId": USER_ID,
        "orderType": "prasad",
        "totalAmount": "200.00",
        "orderItems": [
            {"itemType": "prasad", "prasadId": str(uuid.uuid4()), "quantity": 2, "unitPrice": "100.00", "totalPrice": "200.00"},
        ],
    }
    body.update(overrides)
    return build_pending_order(body)


def payment_event(event, order_id="order_W1", payment_id="pay_W1", **entity):
    payment = {"id": payment_id, "order_id": order_id, "amount": 20000, "currency": "INR", "status": "captured"}
    payment.update(entity)
    return {"event": event, "payload": {"payment": {"entity": payment}}, "created_at": 1767225600}


class RazorpayWebhookTests(TestCase):
    def setUp(self):
        self.po = PaymentOrder.objects.create(
            user_id=USER_ID, gateway_order_id="order_W1", amount=20000, currency="INR"
        )
        self.bookings = Mock(spec=BookingServiceClient)
        self.bookings.enabled = True
        self.bookings.list_user_bookings.return_value = []
        patcher = patch.object(apps.get_app_config("payments"), "bookings", self.bookings)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post_raw(self, raw: bytes, signature=None):
        if signature is None:
            signature = hmac.new(WEBHOOK_SECRET.encode(), raw, hashlib.sha256).hexdigest()
        return self.client.post(
            reverse("payments:razorpay_webhook"),
            data=raw,
            content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=signature,
        )

    def _post(self, payload: dict, signature=None):
        return self._post_raw(json.dumps(payload).encode(), signature)

    def _stage(self, **overrides):
        self.po.staged_order = staged(**overrides)
        self.po.save()

    def test_captured_materializes_staged_order(self):
        self._stage()
        resp = self._post(payment_event("payment.captured", captured_at=1767225600))
        self.assertEqual(resp.status_code, 200)

        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "captured")
        self.assertEqual(self.po.gateway_payment_id, "pay_W1")
        self.assertIsNotNone(self.po.captured_at)
        order = Order.objects.get()
        self.assertEqual(self.po.app_order_id, order.pk)
        self.assertEqual(order.items.count(), 1)
        self.assertEqual(order.status_history.get().notes, "Order created via Razorpay webhook")

    def test_redelivered_event_creates_one_order(self):
        self._stage()
        self._post(payment_event("payment.captured"))
        self._post(payment_event("payment.captured"))
        self._post(payment_event("order.paid"))
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderItem.objects.count(), 1)

    def test_verify_then_webhook_creates_one_order(self):
        body = {
            "razorpay_order_id": "order_W1",
            "razorpay_payment_id": "pay_W1",
            "razorpay_signature": checkout_signature("order_W1", "pay_W1"),
            "userId": USER_ID,
            "orderType": "prasad",
            "orderItems": [{"itemType": "prasad", "quantity": 1, "unitPrice": 200, "totalPrice": 200}],
        }
        verify = self.client.post(reverse("payments:verify"), data=json.dumps(body), content_type="application/json")
        self.assertEqual(verify.status_code, 200)

        resp = self._post(payment_event("payment.captured"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Order.objects.count(), 1)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "captured")
        self.assertEqual(str(self.po.app_order_id), verify.json()["app_order_id"])

    def test_captured_without_staged_data_only_updates_status(self):
        resp = self._post(payment_event("payment.captured"))
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "captured")
        self.assertEqual(Order.objects.count(), 0)

    def test_order_paid_uses_order_entity(self):
        self._stage()
        payload = {"event": "order.paid", "payload": {"order": {"entity": {"id": "order_W1", "status": "paid"}}}}
        resp = self._post(payload)
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "paid")
        self.assertIsNotNone(self.po.paid_at)
        self.assertEqual(Order.objects.count(), 1)

    def test_authorized_only_updates_status(self):
        self._stage()
        resp = self._post(payment_event("payment.authorized", status="authorized"))
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "authorized")
        self.assertIsNotNone(self.po.authorized_at)
        self.assertEqual(Order.objects.count(), 0)

    def test_late_authorized_does_not_downgrade(self):
        self.po.status = "captured"
        self.po.save()
        self._post(payment_event("payment.authorized", status="authorized"))
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "captured")

    def test_failed_records_reason_and_never_materializes(self):
        self._stage()
        resp = self._post(payment_event("payment.failed", status="failed", error_description="Card declined"))
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "failed")
        self.assertEqual(self.po.failure_reason, "Card declined")
        self.assertIsNotNone(self.po.failed_at)
        self.assertEqual(Order.objects.count(), 0)

    def test_failed_after_paid_is_ignored(self):
        self.po.status = "paid"
        self.po.save()
        self._post(payment_event("payment.failed", payment_id="pay_LATE", status="failed"))
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "paid")

    def test_refund_events_are_logged_only(self):
        payload = {"event": "refund.processed", "payload": {"refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_W1"}}}}
        resp = self._post(payload)
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "created")

    def test_unsupported_event(self):
        resp = self._post({"event": "subscription.charged", "payload": {}})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["message"], "Unsupported webhook event type.")

    def test_unknown_order_is_acknowledged(self):
        resp = self._post(payment_event("payment.captured", order_id="order_nope", payment_id="pay_nope"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Order.objects.count(), 0)

    def test_invalid_signature_rejected(self):
        with self.assertLogs("payments.webhook", level="WARNING"):
            resp = self._post(payment_event("payment.captured"), signature="f" * 64)
        self.assertEqual(resp.status_code, 400)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "created")

    def test_missing_signature_rejected(self):
        resp = self.client.post(
            reverse("payments:razorpay_webhook"),
            data=json.dumps(payment_event("payment.captured")),
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 400)

    def test_signature_checked_against_raw_body(self):
        raw = b'{"event":   "payment.captured", "payload": {"payment": {"entity": {"id": "pay_W1", "order_id": "order_W1"}}}}'
        resp = self._post_raw(raw)
        self.assertEqual(resp.status_code, 200)
        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "captured")

    def test_no_secret_fails_closed(self):
        cfg = apps.get_app_config("payments")
        with patch.object(cfg, "secrets", RazorpaySecrets("rzp_test_key", "rzp_test_secret", "")):
            resp = self._post(payment_event("payment.captured"), signature="")
        self.assertEqual(resp.status_code, 400)

    def test_unsigned_allowed_when_opted_in(self):
        cfg = apps.get_app_config("payments")
        with patch.object(cfg, "secrets", RazorpaySecrets("rzp_test_key", "rzp_test_secret", "", True)):
            resp = self._post(payment_event("payment.captured"), signature="")
        self.assertEqual(resp.status_code, 200)

    def test_malformed_payloads(self):
        self.assertEqual(self._post_raw(b"{not json").status_code, 400)
        self.assertEqual(self._post({"payload": {}}).status_code, 400)
        self.assertEqual(self._post({"event": "payment.captured"}).status_code, 400)

    def test_processing_error_asks_for_redelivery(self):
        self._stage()
        with patch("payments.webhook.materialize_staged", side_effect=RuntimeError("db gone")):
            resp = self._post(payment_event("payment.captured"))
        self.assertEqual(resp.status_code, 500)

        resp = self._post(payment_event("payment.captured"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Order.objects.count(), 1)

    def test_duplicate_event_booking_creates_no_order(self):
        booking = {"preferredDate": "2026-01-10", "preferredTimeSlot": "morning"}
        self._stage(orderType="event", orderItems=[], eventBookingData=booking)
        self.bookings.list_user_bookings.return_value = [
            {"preferredDate": ["2026-01-10"], "preferredTimeSlot": ["morning"]}
        ]
        resp = self._post(payment_event("payment.captured"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Order.objects.count(), 0)
        self.bookings.create_booking.assert_not_called()
        self.bookings.list_user_bookings.assert_called_once_with(USER_ID, access_token=None)

    def test_booking_declined_by_verify_stays_declined(self):
        booking = {"preferredDate": "2026-01-10", "preferredTimeSlot": "morning"}
        body = {
            "razorpay_order_id": "order_W1",
            "razorpay_payment_id": "pay_W1",
            "razorpay_signature": checkout_signature("order_W1", "pay_W1"),
            "userId": USER_ID,
            "orderType": "event",
            "eventBookingData": booking,
        }
        self.bookings.list_user_bookings.return_value = [booking]
        verify = self.client.post(
            reverse("payments:verify"), data=json.dumps(body), content_type="application/json",
            HTTP_AUTHORIZATION="Bearer user-token",
        )
        self.assertEqual(verify.status_code, 200)
        self.assertFalse(verify.json()["order_created"])

        # the webhook has no user token, so the lookup fails on this path
        self.bookings.list_user_bookings.side_effect = BookingServiceError("401 Unauthorized")
        resp = self._post(payment_event("payment.captured"))
        self.assertEqual(resp.status_code, 200)

        self.po.refresh_from_db()
        self.assertEqual(self.po.status, "captured")
        self.assertIsNotNone(self.po.booking_declined_at)
        self.assertIsNone(self.po.app_order_id)
        self.assertEqual(Order.objects.count(), 0)
        self.bookings.create_booking.assert_not_called()
        self.bookings.list_user_bookings.assert_called_once()
