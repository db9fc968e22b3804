import json
import logging

from django.apps import apps
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .constants import (
    EVENT_ORDER_PAID,
    EVENT_PAYMENT_AUTHORIZED,
    EVENT_PAYMENT_CAPTURED,
    EVENT_PAYMENT_FAILED,
    EVENT_REFUND_CREATED,
    EVENT_REFUND_PROCESSED,
    WEBHOOK_EVENT_UNSUPPORTED,
    WEBHOOK_PAYLOAD_INVALID,
    WEBHOOK_PROCESSING_FAILED,
    WEBHOOK_SIGNATURE_INVALID,
)
from .models import PaymentOrder
from .services import apply_status, materialize_staged
from .utils import from_unix_timestamp, verify_webhook_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"


def _entity(payload: dict, name: str) -> dict:
    return ((payload.get(name) or {}).get("entity")) or {}


def _find_payment_order(order_id, payment_id):
    # gateway order id first; a payment id only matches once verify or an
    # earlier event recorded it
    payment_order = None
    if order_id:
        payment_order = PaymentOrder.objects.filter(gateway_order_id=order_id).first()
    if payment_order is None and payment_id:
        payment_order = PaymentOrder.objects.filter(gateway_payment_id=payment_id).first()
    return payment_order


def _payment_changes(payment_order, payment: dict) -> dict:
    changes = {"gateway_entity": payment}
    if payment.get("id") and payment_order.gateway_payment_id != payment["id"]:
        # a payment id already owned by another order must not be copied here
        taken = PaymentOrder.objects.filter(gateway_payment_id=payment["id"]).exclude(pk=payment_order.pk).exists()
        if not taken:
            changes["gateway_payment_id"] = payment["id"]
    if payment.get("amount"):
        changes["amount"] = int(payment["amount"])
    return changes


def _handle_authorized(payment_order, payment, bookings):
    changes = _payment_changes(payment_order, payment)
    changes["authorized_at"] = from_unix_timestamp(payment.get("created_at")) or timezone.now()
    apply_status(payment_order, "authorized", **changes)


def _handle_captured(payment_order, payment, bookings):
    changes = _payment_changes(payment_order, payment)
    changes["captured_at"] = from_unix_timestamp(payment.get("captured_at")) or timezone.now()
    changes["failure_reason"] = None
    apply_status(payment_order, "captured", **changes)
    materialize_staged(payment_order, bookings=bookings, source="webhook")


def _handle_order_paid(payment_order, payment, bookings, order=None):
    changes = _payment_changes(payment_order, payment) if payment else {}
    changes["gateway_entity"] = payment or order
    changes["paid_at"] = timezone.now()
    apply_status(payment_order, "paid", **changes)
    materialize_staged(payment_order, bookings=bookings, source="webhook")


def _handle_failed(payment_order, payment, bookings):
    changes = _payment_changes(payment_order, payment)
    changes["failed_at"] = timezone.now()
    changes["failure_reason"] = (payment.get("error_description") or "Payment failed")[:255]
    apply_status(payment_order, "failed", **changes)


def _handle_refund(event, payload):
    refund = _entity(payload, "refund")
    logger.info(
        "Refund event %s: refund %s for payment %s (amount %s)",
        event, refund.get("id"), refund.get("payment_id"), refund.get("amount"),
    )


PAYMENT_HANDLERS = {
    EVENT_PAYMENT_AUTHORIZED: _handle_authorized,
    EVENT_PAYMENT_CAPTURED: _handle_captured,
    EVENT_PAYMENT_FAILED: _handle_failed,
}


@csrf_exempt
@require_POST
def razorpay_webhook(request):
    """Gateway-pushed payment events. Delivery is at-least-once."""
    payments_app = apps.get_app_config("payments")
    secrets = payments_app.secrets

    # signature covers the raw bytes, never a re-serialized body
    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not verify_webhook_signature(
        request.body, signature, secrets.webhook_secret, allow_unsigned=secrets.allow_unsigned_webhooks
    ):
        logger.warning("Rejected webhook with invalid signature")
        return JsonResponse({"ok": False, "error": WEBHOOK_SIGNATURE_INVALID}, status=400)

    try:
        body = json.loads(request.body.decode("utf-8"))
    except Exception:
        return JsonResponse({"ok": False, "error": WEBHOOK_PAYLOAD_INVALID}, status=400)
    if not isinstance(body, dict) or not body.get("event") or not isinstance(body.get("payload"), dict):
        return JsonResponse({"ok": False, "error": WEBHOOK_PAYLOAD_INVALID}, status=400)

    event = body["event"]
    payload = body["payload"]
    logger.info("Received webhook event %s", event)

    if event in (EVENT_REFUND_CREATED, EVENT_REFUND_PROCESSED):
        _handle_refund(event, payload)
        return JsonResponse({"ok": True, "message": "Webhook processed"})
    if event not in PAYMENT_HANDLERS and event != EVENT_ORDER_PAID:
        logger.info("Ignoring unsupported webhook event %s", event)
        return JsonResponse({"ok": True, "message": WEBHOOK_EVENT_UNSUPPORTED})

    payment = _entity(payload, "payment")
    order = _entity(payload, "order")
    order_id = payment.get("order_id") or order.get("id")
    payment_order = _find_payment_order(order_id, payment.get("id"))
    if payment_order is None:
        logger.warning("Webhook %s for unknown order %s (payment %s)", event, order_id, payment.get("id"))
        return JsonResponse({"ok": True, "message": "Payment order not found; event acknowledged"})

    try:
        if event == EVENT_ORDER_PAID:
            _handle_order_paid(payment_order, payment, payments_app.bookings, order=order)
        else:
            PAYMENT_HANDLERS[event](payment_order, payment, payments_app.bookings)
    except Exception:
        logger.exception("Webhook %s processing failed for %s", event, payment_order.gateway_order_id)
        return JsonResponse({"ok": False, "error": WEBHOOK_PROCESSING_FAILED}, status=500)

    return JsonResponse({"ok": True, "message": "Webhook processed"})
