import json
import logging

from django.apps import apps
from django.core.exceptions import ImproperlyConfigured
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from .constants import (
    PAYMENT_CAPTURE_FAILED,
    PAYMENT_DETAILS_FETCH_FAILED,
    PAYMENT_ORDER_ALREADY_PROCESSED,
    PAYMENT_ORDER_CREATION_FAILED,
    PAYMENT_ORDER_NOT_FOUND,
    PAYMENT_SIGNATURE_INVALID,
    USER_ID_REQUIRED,
)
from .integrations.razorpay_gateway import RazorpayError
from .models import PaymentOrder
from .services import (
    MaterializationError,
    apply_status,
    build_pending_order,
    materialize_order,
    record_verified_payment,
)
from .utils import from_unix_timestamp, generate_receipt, parse_amount, to_minor_units, verify_payment_signature

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = [value for value, _ in PaymentOrder.STATUS]


def _json_body(request):
    try: return json.loads(request.body.decode("utf-8"))
    except Exception: return None


def _payments_app():
    return apps.get_app_config("payments")


def _positive_amount(value):
    try:
        amount = parse_amount(value)
    except ValueError:
        return None
    return amount if amount > 0 else None


@csrf_exempt
@require_http_methods(["GET", "POST"])
def payment_orders_view(request):
    if request.method == "POST":
        return _create_payment_order(request)
    return _list_payment_orders(request)


def _create_payment_order(request):
    """Checkout initiation: open a gateway order and mirror it locally."""
    body = _json_body(request)
    if not isinstance(body, dict):
        return JsonResponse({"ok": False, "error": "Invalid JSON body"}, status=400)

    user_id = str(body.get("userId") or "").strip()
    if not user_id:
        return JsonResponse({"ok": False, "error": USER_ID_REQUIRED}, status=400)
    amount = _positive_amount(body.get("amount"))
    if amount is None:
        return JsonResponse({"ok": False, "error": "Amount must be greater than 0"}, status=400)
    currency = str(body.get("currency") or "INR").strip().upper()
    if len(currency) != 3:
        return JsonResponse({"ok": False, "error": "Currency must be a 3 letter ISO code"}, status=400)
    for key in ("notes", "metadata"):
        if body.get(key) is not None and not isinstance(body[key], dict):
            return JsonResponse({"ok": False, "error": f"{key} must be a valid JSON object"}, status=400)

    receipt = body.get("receipt") or generate_receipt()
    try:
        remote = _payments_app().gateway.create_order(
            amount=to_minor_units(amount),
            currency=currency,
            receipt=receipt,
            notes=body.get("notes"),
            payment_capture=bool(body.get("autoCapture", False)),
        )
    except RazorpayError as e:
        logger.error("Payment order creation failed for user %s: %s", user_id, e)
        if e.status_code == 400:
            status, message = 400, str(e)
        elif e.status_code == 401:
            status, message = 500, "Payment service authentication failed."
        else:
            status, message = 502, PAYMENT_ORDER_CREATION_FAILED
        return JsonResponse({"ok": False, "error": message}, status=status)

    record = PaymentOrder.objects.create(
        user_id=user_id,
        gateway_order_id=remote["id"],
        amount=int(remote.get("amount") or to_minor_units(amount)),
        currency=remote.get("currency") or currency,
        status="created",
        receipt=remote.get("receipt") or receipt,
        notes=remote.get("notes") or body.get("notes"),
        metadata=body.get("metadata"),
        customer_email=body.get("customerEmail"),
        customer_phone=body.get("customerPhone"),
        expires_at=from_unix_timestamp(remote.get("expire_at") or remote.get("expires_at")),
    )
    logger.info("Created payment order %s for user %s", record.gateway_order_id, user_id)
    return JsonResponse(
        {"ok": True, "message": "Payment order created successfully.", "order": remote, "record": record.as_dict()},
        status=201,
    )


def _list_payment_orders(request):
    status = (request.GET.get("status") or "").lower()
    if status and status not in PAYMENT_STATUSES:
        return JsonResponse({"ok": False, "error": "Invalid status value"}, status=400)
    try:
        page = int(request.GET.get("page", "1"))
        page_size = int(request.GET.get("pageSize", "25"))
    except ValueError:
        return JsonResponse({"ok": False, "error": "page and pageSize must be integers"}, status=400)
    if page < 1 or not 1 <= page_size <= 100:
        return JsonResponse({"ok": False, "error": "page must be >= 1 and pageSize within 1..100"}, status=400)

    qs = PaymentOrder.objects.all()
    if status:
        qs = qs.filter(status=status)
    user_id = (request.GET.get("userId") or "").strip()
    if user_id:
        qs = qs.filter(user_id=user_id)

    start = (page - 1) * page_size
    total = qs.count()
    rows = [po.as_dict() for po in qs.order_by("-created_at")[start:start + page_size]]
    return JsonResponse({"ok": True, "data": rows, "page": page, "page_size": page_size, "total": total})


@require_GET
def payment_order_detail_view(request, gateway_order_id: str):
    record = PaymentOrder.objects.filter(gateway_order_id=gateway_order_id).first()
    if record is None:
        return JsonResponse({"ok": False, "error": PAYMENT_ORDER_NOT_FOUND}, status=404)

    gateway = _payments_app().gateway
    try:
        remote_order = gateway.fetch_order(gateway_order_id)
        payments = gateway.fetch_order_payments(gateway_order_id)
    except RazorpayError as e:
        logger.error("Fetching %s from gateway failed: %s", gateway_order_id, e)
        return JsonResponse({"ok": False, "error": PAYMENT_DETAILS_FETCH_FAILED, "record": record.as_dict()}, status=502)
    return JsonResponse({"ok": True, "record": record.as_dict(), "remote_order": remote_order, "payments": payments})


@csrf_exempt
@require_POST
def verify_payment_view(request):
    """Client-side confirmation right after checkout.

    Checks the checkout signature, stages the caller's order payload on the
    PaymentOrder and materializes the Order synchronously so the response can
    carry its id. The webhook path finishes the job if this one cannot.
    """
    body = _json_body(request)
    if not isinstance(body, dict):
        return JsonResponse({"ok": False, "error": "Invalid JSON body"}, status=400)
    required = ["razorpay_order_id", "razorpay_payment_id", "razorpay_signature"]
    missing = [k for k in required if not body.get(k)]
    if missing:
        return JsonResponse({"ok": False, "error": f"Missing fields: {', '.join(missing)}"}, status=400)

    gw_order_id = str(body["razorpay_order_id"])
    payment_id = str(body["razorpay_payment_id"])
    signature = str(body["razorpay_signature"])
    payments_app = _payments_app()

    try:
        valid = verify_payment_signature(gw_order_id, payment_id, signature, payments_app.secrets.key_secret)
    except ImproperlyConfigured:
        return JsonResponse({"ok": False, "error": "Signature verification is not configured"}, status=500)
    if not valid:
        logger.warning("Invalid payment signature for order %s (payment %s)", gw_order_id, payment_id)
        return JsonResponse({"ok": False, "error": PAYMENT_SIGNATURE_INVALID}, status=400)

    payment_order = PaymentOrder.objects.filter(gateway_order_id=gw_order_id).first()
    if payment_order is None:
        logger.error("PaymentOrder not found: %s", gw_order_id)
        return JsonResponse({"ok": False, "error": PAYMENT_ORDER_NOT_FOUND, "searched_id": gw_order_id}, status=404)

    # a different payment id is only a conflict once this order already succeeded;
    # after a failed attempt it is the customer's retry
    if (
        payment_order.gateway_payment_id
        and payment_order.gateway_payment_id != payment_id
        and payment_order.is_successful
    ):
        logger.warning(
            "Payment ID mismatch for order %s: existing %s, received %s",
            gw_order_id, payment_order.gateway_payment_id, payment_id,
        )
        return JsonResponse({"ok": False, "error": PAYMENT_ORDER_ALREADY_PROCESSED}, status=409)

    if payment_order.is_successful and payment_order.app_order_id:
        return JsonResponse({
            "ok": True,
            "message": "Payment already verified",
            "order_created": True,
            "app_order_id": str(payment_order.app_order_id),
            "payment_order": payment_order.as_dict(),
        })

    try:
        pending = build_pending_order(body)
    except MaterializationError as e:
        logger.error("Rejected verify payload for %s: %s", gw_order_id, e)
        return JsonResponse({"ok": False, "error": str(e)}, status=400)

    try:
        payment_order = record_verified_payment(payment_order, payment_id=payment_id, signature=signature, pending=pending)
    except Exception:
        logger.exception("Failed to record verified payment for %s", gw_order_id)
        return JsonResponse(
            {"ok": False, "error": "Unable to record payment verification", "state_changed": False}, status=500
        )

    try:
        order = materialize_order(
            payment_order,
            payment_order.staged_order,
            access_token=request.headers.get("Authorization"),
            bookings=payments_app.bookings,
            source="verify",
        )
    except Exception:
        logger.exception("Payment %s verified but order creation failed", gw_order_id)
        return JsonResponse({
            "ok": False,
            "error": "Payment verified but the order could not be created yet; it will be retried from the payment webhook.",
            "state_changed": True,
            "payment_order": payment_order.as_dict(),
        }, status=500)

    if order is None:
        logger.info("Payment %s verified; order not created now", gw_order_id)
        return JsonResponse({
            "ok": True,
            "message": "Payment verified, but the order was not created now (for example a duplicate event booking). "
                       "It may still be created via the payment webhook.",
            "order_created": False,
            "app_order_id": None,
            "payment_order": payment_order.as_dict(),
        })

    logger.info("Payment verified for order %s; app order %s", gw_order_id, order.pk)
    return JsonResponse({
        "ok": True,
        "message": "Payment verified and order created successfully.",
        "order_created": True,
        "app_order_id": str(order.pk),
        "order": order.as_dict(),
        "payment_order": payment_order.as_dict(),
    })


@csrf_exempt
@require_POST
def capture_payment_view(request):
    """Manual capture of an authorized payment. Never creates orders."""
    body = _json_body(request)
    if not isinstance(body, dict):
        return JsonResponse({"ok": False, "error": "Invalid JSON body"}, status=400)
    payment_id = str(body.get("paymentId") or "").strip()
    if not payment_id:
        return JsonResponse({"ok": False, "error": "paymentId is required"}, status=400)

    payment_order = PaymentOrder.objects.filter(gateway_payment_id=payment_id).first()
    if payment_order is None:
        logger.error("Order not found for payment ID: %s", payment_id)
        return JsonResponse({"ok": False, "error": PAYMENT_ORDER_NOT_FOUND}, status=404)

    if payment_order.status == "captured":
        return JsonResponse({"ok": True, "message": "Payment already captured", "payment_order": payment_order.as_dict()})

    if body.get("amount") is not None:
        amount = _positive_amount(body["amount"])
        if amount is None:
            return JsonResponse({"ok": False, "error": "Amount must be greater than 0"}, status=400)
        amount = to_minor_units(amount)
    else:
        amount = payment_order.amount
    if not amount:
        return JsonResponse({"ok": False, "error": "Amount is required when the payment amount is unknown"}, status=400)
    currency = str(body.get("currency") or payment_order.currency or "INR").upper()

    try:
        capture = _payments_app().gateway.capture_payment(payment_id, amount, currency)
    except RazorpayError as e:
        logger.error("Capture of %s failed: %s", payment_id, e)
        status = 400 if e.status_code == 400 else 502
        return JsonResponse({"ok": False, "error": PAYMENT_CAPTURE_FAILED, "detail": str(e), "state_changed": False}, status=status)

    apply_status(
        payment_order,
        "captured",
        captured_at=from_unix_timestamp(capture.get("captured_at")) or timezone.now(),
        amount=int(capture.get("amount") or amount),
        failure_reason=None,
    )
    logger.info("Payment %s captured", payment_id)
    return JsonResponse({
        "ok": True,
        "message": "Payment captured successfully",
        "capture": capture,
        "payment_order": payment_order.as_dict(),
    })
