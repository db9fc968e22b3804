import hashlib
import hmac
import json
import tempfile
import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock, patch

from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, TestCase
from razorpay.errors import BadRequestError, GatewayError, ServerError
from requests import RequestException

from . import utils
from .integrations.bookings import (
    BookingServiceClient,
    BookingServiceError,
    booking_slots,
    build_booking_payload,
    find_conflicting_booking,
)
from .integrations.razorpay_gateway import RazorpayClient, RazorpayError, RazorpaySecrets, load_secrets
from .models import PaymentOrder


def _sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentSignatureTests(SimpleTestCase):
    def test_valid_signature_accepted(self):
        sig = _sign("s3cret", b"order_1|pay_1")
        self.assertTrue(utils.verify_payment_signature("order_1", "pay_1", sig, "s3cret"))

    def test_single_flipped_character_rejected(self):
        sig = _sign("s3cret", b"order_1|pay_1")
        flipped = ("0" if sig[0] != "0" else "1") + sig[1:]
        self.assertFalse(utils.verify_payment_signature("order_1", "pay_1", flipped, "s3cret"))

    def test_signature_is_bound_to_payment_id(self):
        sig = _sign("s3cret", b"order_1|pay_1")
        self.assertFalse(utils.verify_payment_signature("order_1", "pay_2", sig, "s3cret"))

    def test_missing_secret_is_a_configuration_error(self):
        with self.assertRaises(ImproperlyConfigured):
            utils.verify_payment_signature("order_1", "pay_1", "abc", "")


class WebhookSignatureTests(SimpleTestCase):
    body = b'{"event": "payment.captured", "payload": {}}'

    def test_valid_signature_over_raw_bytes(self):
        self.assertTrue(utils.verify_webhook_signature(self.body, _sign("wh", self.body), "wh"))

    def test_body_byte_flip_rejected(self):
        sig = _sign("wh", self.body)
        tampered = self.body.replace(b"captured", b"capturex")
        self.assertFalse(utils.verify_webhook_signature(tampered, sig, "wh"))

    def test_reserialized_body_does_not_match(self):
        sig = _sign("wh", self.body)
        reserialized = json.dumps(json.loads(self.body), separators=(",", ":")).encode()
        self.assertFalse(utils.verify_webhook_signature(reserialized, sig, "wh"))

    def test_missing_header_rejected(self):
        self.assertFalse(utils.verify_webhook_signature(self.body, "", "wh"))

    def test_no_secret_fails_closed(self):
        self.assertFalse(utils.verify_webhook_signature(self.body, "anything", ""))

    def test_no_secret_with_explicit_opt_out(self):
        self.assertTrue(utils.verify_webhook_signature(self.body, "", "", allow_unsigned=True))


class SanitizeUuidTests(SimpleTestCase):
    valid = "3F2504E0-4F89-41D3-9A0C-0305E82C3301"

    def test_valid_v4_is_lower_cased(self):
        self.assertEqual(utils.sanitize_uuid(self.valid), self.valid.lower())

    def test_surrounding_whitespace_trimmed(self):
        self.assertEqual(utils.sanitize_uuid(f"  {self.valid} "), self.valid.lower())

    def test_numeric_identifier_rejected(self):
        self.assertIsNone(utils.sanitize_uuid("12345"))

    def test_empty_and_none(self):
        self.assertIsNone(utils.sanitize_uuid(""))
        self.assertIsNone(utils.sanitize_uuid(None))

    def test_non_v4_uuid_rejected(self):
        # version 1 UUID
        self.assertIsNone(utils.sanitize_uuid("6ba7b810-9dad-11d1-80b4-00c04fd430c8"))

    def test_non_string_rejected(self):
        self.assertIsNone(utils.sanitize_uuid(12345))

    def test_fields_helper_nulls_bad_values(self):
        out = utils.sanitize_uuid_fields({"a": self.valid, "b": "42", "c": "keep"}, ["a", "b"])
        self.assertEqual(out, {"a": self.valid.lower(), "b": None, "c": "keep"})


class MoneyHelperTests(SimpleTestCase):
    def test_minor_units(self):
        self.assertEqual(utils.to_minor_units("500.00"), 50000)
        self.assertEqual(utils.to_minor_units(10.005), 1001)
        self.assertEqual(utils.to_minor_units(1), 100)

    def test_decimal_string(self):
        self.assertEqual(utils.decimal_string(0.1), "0.1")
        self.assertEqual(utils.decimal_string("250.50"), "250.50")
        self.assertIsNone(utils.decimal_string(None))

    def test_parse_amount_rejects_unusable_values(self):
        self.assertEqual(utils.parse_amount(" 250.50 "), Decimal("250.50"))
        self.assertEqual(utils.parse_amount(5), Decimal("5"))
        for value in (True, False, "inf", "-Infinity", "NaN", "1e400", "100000000", "abc", None, [1], {"a": 1}):
            with self.subTest(value=value), self.assertRaises(ValueError):
                utils.parse_amount(value)

    def test_receipt_fits_gateway_limit(self):
        receipt = utils.generate_receipt()
        self.assertTrue(receipt.startswith("RCPT"))
        self.assertLessEqual(len(receipt), 40)


class StatusTransitionTests(SimpleTestCase):
    def _po(self, status):
        return PaymentOrder(gateway_order_id="order_x", amount=100, status=status)

    def test_forward_moves_allowed(self):
        self.assertTrue(self._po("created").can_transition_to("authorized"))
        self.assertTrue(self._po("authorized").can_transition_to("captured"))
        self.assertTrue(self._po("paid").can_transition_to("captured"))

    def test_success_is_never_reverted(self):
        self.assertFalse(self._po("captured").can_transition_to("paid"))
        self.assertFalse(self._po("captured").can_transition_to("authorized"))
        self.assertFalse(self._po("paid").can_transition_to("failed"))

    def test_failed_attempt_can_be_retried(self):
        self.assertTrue(self._po("failed").can_transition_to("paid"))
        self.assertTrue(self._po("failed").can_transition_to("captured"))
        self.assertFalse(self._po("failed").can_transition_to("refunded"))

    def test_same_status_is_an_overwrite(self):
        self.assertTrue(self._po("captured").can_transition_to("captured"))


class BookingSlotTests(SimpleTestCase):
    def test_single_date_and_slot(self):
        self.assertEqual(
            booking_slots({"preferredDate": "2026-01-10T00:00:00.000Z", "preferredTimeSlot": "morning"}),
            {("2026-01-10", "morning")},
        )

    def test_parallel_lists(self):
        booking = {"preferredDate": ["2026-01-10", "2026-01-11"], "preferredTimeSlot": ["morning", "evening"]}
        self.assertEqual(booking_slots(booking), {("2026-01-10", "morning"), ("2026-01-11", "evening")})

    def test_date_to_slot_map(self):
        booking = {"preferredDate": ["2026-01-10"], "preferredTimeSlot": {"2026-01-10": ["morning", "evening"]}}
        self.assertEqual(booking_slots(booking), {("2026-01-10", "morning"), ("2026-01-10", "evening")})

    def test_conflict_across_shapes(self):
        existing = [
            {"preferredDate": "2026-02-01", "preferredTimeSlot": "evening"},
            {"preferredDate": ["2026-01-10"], "preferredTimeSlot": ["morning"]},
        ]
        requested = {"preferredDate": ["2026-01-10"], "preferredTimeSlot": {"2026-01-10": "morning"}}
        self.assertEqual(find_conflicting_booking(existing, requested), existing[1])

    def test_same_date_other_slot_is_not_a_conflict(self):
        existing = [{"preferredDate": "2026-01-10", "preferredTimeSlot": "evening"}]
        requested = {"preferredDate": "2026-01-10", "preferredTimeSlot": "morning"}
        self.assertIsNone(find_conflicting_booking(existing, requested))

    def test_payload_uses_canonical_shape(self):
        payload = build_booking_payload(
            {"preferredDate": "2026-01-10", "preferredTimeSlot": "morning", "members": [{"name": "A"}, {"name": "B"}]},
            "order-1",
        )
        self.assertEqual(payload["preferredDate"], ["2026-01-10"])
        self.assertEqual(payload["preferredTimeSlot"], {"2026-01-10": "morning"})
        self.assertEqual(payload["numberOfPeople"], 2)
        self.assertEqual(payload["orderId"], "order-1")


class BookingServiceClientTests(SimpleTestCase):
    def test_lists_bookings_with_forwarded_token(self):
        resp = Mock(status_code=200)
        resp.json.return_value = {"success": True, "data": {"bookings": [{"id": 1}]}}
        client = BookingServiceClient("https://bookings.test/", timeout=3)
        with patch("payments.integrations.bookings.requests.get", return_value=resp) as get:
            bookings = client.list_user_bookings("u1", access_token="tok")
        self.assertEqual(bookings, [{"id": 1}])
        _, kwargs = get.call_args
        self.assertEqual(get.call_args[0][0], "https://bookings.test/launch-event/rudraksha-bookings")
        self.assertEqual(kwargs["params"], {"userId": "u1"})
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok")
        self.assertEqual(kwargs["timeout"], 3)

    def test_unsuccessful_body_means_no_bookings(self):
        resp = Mock(status_code=200)
        resp.json.return_value = {"success": False}
        with patch("payments.integrations.bookings.requests.get", return_value=resp):
            self.assertEqual(BookingServiceClient("https://b.test").list_user_bookings("u1"), [])

    def test_transport_failure_raises(self):
        with patch("payments.integrations.bookings.requests.get", side_effect=RequestException("down")):
            with self.assertRaises(BookingServiceError):
                BookingServiceClient("https://b.test").list_user_bookings("u1")

    def test_disabled_without_base_url(self):
        self.assertFalse(BookingServiceClient("").enabled)


class RazorpayClientTests(SimpleTestCase):
    secrets = RazorpaySecrets("rzp_key", "rzp_secret", "wh")

    def _client(self, **kwargs):
        patcher = patch("payments.integrations.razorpay_gateway.razorpay.Client")
        sdk_class = patcher.start()
        self.addCleanup(patcher.stop)
        return RazorpayClient(self.secrets, **kwargs), sdk_class

    def test_create_order_sends_minor_units(self):
        client, sdk_class = self._client(base_url="https://gw.test/", timeout=5)
        sdk = sdk_class.return_value
        sdk.order.create.return_value = {"id": "order_1", "amount": 50000}

        data = client.create_order(amount=50000, currency="INR", receipt="r1")

        self.assertEqual(data["id"], "order_1")
        sdk_class.assert_called_once_with(auth=("rzp_key", "rzp_secret"), base_url="https://gw.test")
        kwargs = sdk.order.create.call_args[1]
        self.assertEqual(kwargs["data"]["amount"], 50000)
        self.assertEqual(kwargs["data"]["payment_capture"], 0)
        self.assertEqual(kwargs["timeout"], 5)

    def test_capture_passes_amount_and_currency(self):
        client, sdk_class = self._client()
        sdk = sdk_class.return_value
        sdk.payment.capture.return_value = {"id": "pay_1", "status": "captured"}
        client.capture_payment("pay_1", 25050, "INR")
        sdk.payment.capture.assert_called_once_with("pay_1", 25050, data={"currency": "INR"}, timeout=10.0)

    def test_sdk_errors_carry_status_codes(self):
        client, sdk_class = self._client()
        sdk = sdk_class.return_value
        cases = [
            (BadRequestError("Authentication failed"), 401),
            (BadRequestError("The id provided does not exist"), 400),
            (GatewayError("Gateway timeout"), 502),
            (ServerError("Unknown Error"), 500),
            (RequestException("connection reset"), None),
        ]
        for error, status_code in cases:
            sdk.order.fetch.side_effect = error
            with self.subTest(error=error), self.assertRaises(RazorpayError) as ctx:
                client.fetch_order("order_1")
            self.assertEqual(ctx.exception.status_code, status_code)

    def test_missing_credentials(self):
        client = RazorpayClient(RazorpaySecrets("", "", ""))
        with patch("payments.integrations.razorpay_gateway.razorpay.Client") as sdk_class:
            with self.assertRaises(RazorpayError):
                client.fetch_order("order_1")
        sdk_class.assert_not_called()


class LoadSecretsTests(SimpleTestCase):
    def test_keys_file_fallback(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as tmp:
            json.dump({"keyId": "file_key", "keySecret": "file_secret"}, tmp)
        settings = SimpleNamespace(
            RAZORPAY_KEY_ID="", RAZORPAY_KEY_SECRET="", RAZORPAY_KEYS_FILE=tmp.name, RAZORPAY_WEBHOOK_SECRET="wh"
        )
        secrets = load_secrets(settings)
        self.assertEqual((secrets.key_id, secrets.key_secret), ("file_key", "file_secret"))
        self.assertFalse(secrets.allow_unsigned_webhooks)

    def test_settings_win_over_file(self):
        settings = SimpleNamespace(RAZORPAY_KEY_ID="env_key", RAZORPAY_KEY_SECRET="env_secret", RAZORPAY_KEYS_FILE="")
        secrets = load_secrets(settings)
        self.assertEqual(secrets.key_id, "env_key")
        self.assertEqual(secrets.webhook_secret, "")


class PaymentOrderQuerySetTests(TestCase):
    def setUp(self):
        self.po = PaymentOrder.objects.create(user_id="u1", gateway_order_id="order_q", amount=100)

    def test_pointer_claimed_once(self):
        first, second = uuid.uuid4(), uuid.uuid4()
        self.assertTrue(PaymentOrder.objects.claim_order_pointer(self.po.pk, first))
        self.assertFalse(PaymentOrder.objects.claim_order_pointer(self.po.pk, second))
        self.po.refresh_from_db()
        self.assertEqual(self.po.app_order_id, first)

    def test_staged_snapshot_not_clobbered(self):
        self.assertTrue(PaymentOrder.objects.stage_pending_order(self.po.pk, {"userId": "a"}))
        self.assertFalse(PaymentOrder.objects.stage_pending_order(self.po.pk, {"userId": "b"}))
        self.po.refresh_from_db()
        self.assertEqual(self.po.staged_order, {"userId": "a"})

    def test_declined_record_leaves_the_reconcile_queue(self):
        PaymentOrder.objects.filter(pk=self.po.pk).update(status="paid", staged_order={"userId": "a"})
        self.assertTrue(PaymentOrder.objects.awaiting_materialization().exists())

        self.assertTrue(PaymentOrder.objects.decline_duplicate_booking(self.po.pk))
        self.assertFalse(PaymentOrder.objects.decline_duplicate_booking(self.po.pk))
        self.assertFalse(PaymentOrder.objects.awaiting_materialization().exists())

    def test_no_decline_once_an_order_exists(self):
        PaymentOrder.objects.claim_order_pointer(self.po.pk, uuid.uuid4())
        self.assertFalse(PaymentOrder.objects.decline_duplicate_booking(self.po.pk))
