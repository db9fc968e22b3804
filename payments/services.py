import json
import logging
import uuid
from datetime import timezone as dt_timezone
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from orders.models import Order, OrderItem, OrderStatusHistory

from .constants import GATEWAY_NAME, ORDER_STATUSES, ORDER_TYPES, ORDER_TYPE_REQUIRED, USER_ID_REQUIRED
from .integrations.bookings import (
    BookingServiceError,
    booking_slots,
    build_booking_payload,
    find_conflicting_booking,
    normalize_date,
)
from .models import PaymentOrder
from .utils import decimal_string, sanitize_uuid, sanitize_uuid_fields

logger = logging.getLogger(__name__)

MONEY_FIELDS = ("subtotal", "discountAmount", "convenienceFee", "taxAmount", "totalAmount")
ITEM_REFERENCE_FIELDS = (
    ("itemId", "item_id"),
    ("productId", "product_id"),
    ("pujaId", "puja_id"),
    ("prasadId", "prasad_id"),
    ("darshanId", "darshan_id"),
)
# (key, column length) for free-text fields copied onto Order / OrderItem
ORDER_TEXT_FIELDS = (("currency", 10), ("contactName", 255), ("contactPhone", 32), ("contactEmail", 255))
ITEM_TEXT_FIELDS = (("itemType", 32), ("itemName", 255), ("itemImageUrl", 512), ("status", 32), ("itemDescription", None))
FULFILLMENT_TYPES = [value for value, _ in Order.FULFILLMENT_TYPES]
DELIVERY_TYPES = [value for value, _ in Order.DELIVERY_TYPES]
MAX_QUANTITY = 10000


class MaterializationError(Exception):
    """Pending order data cannot produce an order (bad userId/orderType/items)."""


def require_uuid(value, field: str) -> str:
    """Sanitized UUID for a required field, or :class:`MaterializationError`."""
    if not value:
        raise MaterializationError(f"{field} is required")
    clean = sanitize_uuid(value if isinstance(value, str) else str(value))
    if not clean:
        raise MaterializationError(f"Invalid {field} format: {value!r}. Expected a UUID.")
    return clean


# ---------- pending order data ----------
def _money(value, field):
    try:
        return decimal_string(value)
    except (InvalidOperation, ValueError):
        raise MaterializationError(f"{field} must be a number")


def _text(data: dict, field: str, max_length):
    value = data.get(field)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise MaterializationError(f"{field} must be a string")
    if max_length and len(value) > max_length:
        raise MaterializationError(f"{field} is longer than {max_length} characters")
    return value


def _choice(data: dict, field: str, choices):
    value = data.get(field) or None
    if value is not None and value not in choices:
        raise MaterializationError(f"Invalid {field}: {value!r}")
    return value


def _quantity(value):
    if value is None or value == "":
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        quantity = value
    elif isinstance(value, str) and value.strip().isdecimal():
        quantity = int(value)
    else:
        raise MaterializationError(f"quantity must be a positive integer, got {value!r}")
    if not 1 <= quantity <= MAX_QUANTITY:
        raise MaterializationError(f"quantity must be between 1 and {MAX_QUANTITY}")
    return quantity


def _schedule(body: dict):
    day = body.get("scheduledDate")
    if day not in (None, ""):
        if not isinstance(day, str) or _day(day) is None:
            raise MaterializationError(f"Invalid scheduledDate: {day!r}")
    moment = body.get("scheduledTimestamp")
    if moment not in (None, ""):
        if not isinstance(moment, str) or _moment(moment) is None:
            raise MaterializationError(f"Invalid scheduledTimestamp: {moment!r}")
    return day or None, moment or None


def _pending_item(item: dict) -> dict:
    if not isinstance(item, dict) or not item.get("itemType"):
        raise MaterializationError("Every order item needs an itemType")
    clean = dict(item)
    # older clients spell it "dharshanId"
    if "dharshanId" in clean and "darshanId" not in clean:
        clean["darshanId"] = clean.pop("dharshanId")
    clean = sanitize_uuid_fields(clean, [src for src, _ in ITEM_REFERENCE_FIELDS])
    for field, max_length in ITEM_TEXT_FIELDS:
        clean[field] = _text(item, field, max_length)
    clean["quantity"] = _quantity(item.get("quantity"))
    clean["unitPrice"] = _money(item.get("unitPrice"), "unitPrice")
    clean["totalPrice"] = _money(item.get("totalPrice"), "totalPrice")
    return clean


def build_pending_order(body: dict) -> dict:
    """Snapshot of the order to create, taken from the verify request body.

    Every field is validated here, before anything is staged, so that a
    snapshot that was accepted can always be turned into an order later.
    Raises :class:`MaterializationError` for anything unusable.
    """
    if not body.get("userId"):
        raise MaterializationError(USER_ID_REQUIRED)
    if not body.get("orderType"):
        raise MaterializationError(ORDER_TYPE_REQUIRED)

    user_id = require_uuid(body["userId"], "userId")
    if body["orderType"] not in ORDER_TYPES:
        raise MaterializationError(f"Invalid orderType: {body['orderType']!r}")
    status = body.get("status") or "pending"
    if status not in ORDER_STATUSES:
        raise MaterializationError(f"Invalid status: {status!r}")

    items = body.get("orderItems") or []
    if not isinstance(items, list):
        raise MaterializationError("orderItems must be a list")
    booking_data = body.get("eventBookingData") or body.get("rudrakshaBookingData")
    if booking_data is not None and not isinstance(booking_data, dict):
        raise MaterializationError("eventBookingData must be an object")
    shipping = body.get("shippingAddress")
    if isinstance(shipping, dict):
        shipping = json.dumps(shipping)
    elif shipping is not None and not isinstance(shipping, str):
        raise MaterializationError("shippingAddress must be a string or an object")
    scheduled_date, scheduled_timestamp = _schedule(body)

    pending = {
        "userId": user_id,
        "orderType": body["orderType"],
        "templeId": sanitize_uuid(body.get("templeId")),
        "addressId": sanitize_uuid(body.get("addressId")),
        "status": status,
        "scheduledDate": scheduled_date,
        "scheduledTimestamp": scheduled_timestamp,
        "fulfillmentType": _choice(body, "fulfillmentType", FULFILLMENT_TYPES),
        "shippingAddress": shipping,
        "deliveryType": _choice(body, "deliveryType", DELIVERY_TYPES),
        "orderItems": [_pending_item(item) for item in items],
        "eventBookingData": booking_data,
    }
    for field, max_length in ORDER_TEXT_FIELDS:
        pending[field] = _text(body, field, max_length)
    for field in MONEY_FIELDS:
        pending[field] = _money(body.get(field), field)
    return pending


# ---------- payment order state ----------
@transaction.atomic
def record_verified_payment(payment_order: PaymentOrder, *, payment_id: str, signature: str, pending: dict) -> PaymentOrder:
    """Stage the pending snapshot (first writer wins) and mark the payment paid."""
    if not PaymentOrder.objects.stage_pending_order(payment_order.pk, pending):
        logger.info("Pending order already staged for %s; keeping the original snapshot", payment_order.gateway_order_id)

    payment_order.refresh_from_db()
    now = timezone.now()
    payment_order.gateway_payment_id = payment_id
    payment_order.signature = signature
    payment_order.verified_at = now
    fields = ["gateway_payment_id", "signature", "verified_at", "updated_at"]
    # a capture that already landed via webhook stays captured
    if payment_order.status != "paid" and payment_order.can_transition_to("paid"):
        payment_order.status = "paid"
        payment_order.paid_at = now
        payment_order.failure_reason = None
        fields += ["status", "paid_at", "failure_reason"]
    payment_order.save(update_fields=fields)
    return payment_order


def apply_status(payment_order: PaymentOrder, status: str, **changes) -> bool:
    """Write a gateway-reported status plus related columns.

    Backward transitions (a late ``payment.authorized`` after capture, say)
    only refresh the non-status columns. Returns whether the status moved.
    """
    moved = payment_order.can_transition_to(status)
    if not moved:
        logger.info(
            "Ignoring %s -> %s for %s", payment_order.status, status, payment_order.gateway_order_id
        )
        changes = {k: v for k, v in changes.items() if k in ("gateway_entity",)}
    else:
        payment_order.status = status
    for field, value in changes.items():
        setattr(payment_order, field, value)
    fields = list(changes) + ["updated_at"]
    if moved:
        fields.append("status")
    payment_order.save(update_fields=fields)
    return moved


# ---------- materialization ----------
def _day(value):
    day = normalize_date(value)
    if not day:
        return None
    try:
        return parse_date(day)
    except ValueError:
        return None


def _moment(value):
    if not value or not isinstance(value, str):
        return None
    try:
        moment = parse_datetime(value)
    except (TypeError, ValueError):
        return None
    if moment and timezone.is_naive(moment):
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment


def _decimal(value):
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        raise MaterializationError(f"Invalid amount in staged order: {value!r}")
    return amount


def _is_duplicate_booking(user_id, booking_data, bookings, access_token) -> bool:
    if bookings is None or not bookings.enabled:
        return False
    if not booking_slots(booking_data):
        return False
    owner = booking_data.get("userId") or user_id
    try:
        existing = bookings.list_user_bookings(owner, access_token=access_token)
    except BookingServiceError:
        logger.exception("Duplicate booking check failed for user %s; continuing", owner)
        return False
    conflict = find_conflicting_booking(existing, booking_data)
    if conflict:
        logger.warning(
            "User %s already has a booking for %s; not creating another",
            owner, sorted(booking_slots(booking_data)),
        )
        return True
    return False


def create_order_items(order: Order, items) -> int:
    if not items:
        return 0
    if order.items.exists():
        return 0
    try:
        with transaction.atomic():
            for item in items:
                if not item.get("itemType"):
                    raise MaterializationError(f"Order item missing itemType: {item!r}")
                refs = {dst: sanitize_uuid(item.get(src)) for src, dst in ITEM_REFERENCE_FIELDS}
                OrderItem.objects.create(
                    order=order,
                    item_type=item["itemType"],
                    item_name=item.get("itemName") or None,
                    item_description=item.get("itemDescription") or None,
                    item_image_url=item.get("itemImageUrl") or None,
                    quantity=item.get("quantity") or None,
                    unit_price=_decimal(item.get("unitPrice")),
                    total_price=_decimal(item.get("totalPrice")),
                    item_details=item.get("itemDetails") or None,
                    status=item.get("status") or None,
                    **refs,
                )
    except Exception:
        logger.exception("Failed to create order items for order %s", order.pk)
        return 0
    return len(items)


def ensure_status_history(order: Order, status: str, notes: str) -> bool:
    if order.status_history.exists():
        return False
    OrderStatusHistory.objects.create(order=order, status=status, previous_status=None, notes=notes)
    return True


def create_event_booking(order: Order, booking_data: dict, bookings, access_token=None) -> bool:
    if bookings is None or not bookings.enabled:
        logger.warning("Booking service not configured; skipping booking for order %s", order.pk)
        return False
    try:
        bookings.create_booking(build_booking_payload(booking_data, str(order.pk)), access_token=access_token)
    except Exception:
        logger.exception("Failed to create event booking for order %s", order.pk)
        return False
    logger.info("Created event booking for order %s", order.pk)
    return True


def _order_fields(payment_order: PaymentOrder, pending: dict, user_id: str) -> dict:
    return {
        "user_id": user_id,
        "order_type": pending["orderType"],
        "status": pending.get("status") or "pending",
        "payment_status": "paid",
        "payment_method": GATEWAY_NAME,
        "payment_id": payment_order.gateway_order_id,
        "paid_at": timezone.now(),
        "temple_id": sanitize_uuid(pending.get("templeId")),
        "address_id": sanitize_uuid(pending.get("addressId")),
        "scheduled_date": _day(pending.get("scheduledDate")),
        "scheduled_timestamp": _moment(pending.get("scheduledTimestamp")),
        "fulfillment_type": pending.get("fulfillmentType") or None,
        "subtotal": _decimal(pending.get("subtotal")),
        "discount_amount": _decimal(pending.get("discountAmount")),
        "convenience_fee": _decimal(pending.get("convenienceFee")),
        "tax_amount": _decimal(pending.get("taxAmount")),
        "total_amount": _decimal(pending.get("totalAmount")),
        "currency": pending.get("currency") or payment_order.currency,
        "contact_name": pending.get("contactName"),
        "contact_phone": pending.get("contactPhone"),
        "contact_email": pending.get("contactEmail") or payment_order.customer_email,
        "shipping_address": pending.get("shippingAddress"),
        "delivery_type": pending.get("deliveryType") or None,
    }


def materialize_order(payment_order: PaymentOrder, pending: dict, *, access_token=None, bookings=None, source="verify"):
    """Turn a paid PaymentOrder plus its pending data into exactly one Order.

    Safe to call repeatedly and concurrently. The order pointer is claimed
    with a conditional UPDATE inside the same transaction that inserts the
    Order and its first status row, so only one caller can ever create it;
    losers get the winner's Order back. Items and the event booking follow
    as best-effort steps that never undo the committed Order.

    Returns ``None`` when the duplicate-booking guard declines the order. The
    decline is stored on the PaymentOrder, so every later call (verify retry,
    webhook, reconciliation) returns ``None`` as well.
    """
    if not pending or not pending.get("userId"):
        raise MaterializationError(USER_ID_REQUIRED)
    if not pending.get("orderType"):
        raise MaterializationError(ORDER_TYPE_REQUIRED)
    user_id = require_uuid(pending["userId"], "userId")

    payment_order.refresh_from_db(fields=["app_order_id", "booking_declined_at"])
    if payment_order.app_order_id:
        existing = Order.objects.filter(pk=payment_order.app_order_id).first()
        if existing is None:
            logger.warning(
                "PaymentOrder %s points at missing order %s", payment_order.gateway_order_id, payment_order.app_order_id
            )
        return existing
    if payment_order.booking_declined_at:
        logger.info(
            "Order for %s was declined as a duplicate booking at %s; not creating it",
            payment_order.gateway_order_id, payment_order.booking_declined_at,
        )
        return None

    booking_data = pending.get("eventBookingData")
    if not isinstance(booking_data, dict):
        booking_data = None
    if pending["orderType"] == "event" and booking_data:
        if _is_duplicate_booking(user_id, booking_data, bookings, access_token):
            if PaymentOrder.objects.decline_duplicate_booking(payment_order.pk):
                payment_order.refresh_from_db(fields=["booking_declined_at"])
                return None
            # lost to a caller that already created the order
            payment_order.refresh_from_db(fields=["app_order_id"])
            return Order.objects.filter(pk=payment_order.app_order_id).first()

    fields = _order_fields(payment_order, pending, user_id)
    status = pending.get("status") or "pending"
    order_id = uuid.uuid4()
    order = None
    with transaction.atomic():
        if PaymentOrder.objects.claim_order_pointer(payment_order.pk, order_id):
            order = Order.objects.create(id=order_id, **fields)
            ensure_status_history(order, status, f"Order created via Razorpay {source}")

    if order is None:
        payment_order.refresh_from_db(fields=["app_order_id"])
        logger.info(
            "Lost order claim for %s; order %s already created", payment_order.gateway_order_id, payment_order.app_order_id
        )
        return Order.objects.filter(pk=payment_order.app_order_id).first()

    payment_order.app_order_id = order.pk
    logger.info("Created order %s for PaymentOrder %s via %s", order.pk, payment_order.gateway_order_id, source)

    create_order_items(order, pending.get("orderItems"))
    if pending["orderType"] == "event" and booking_data:
        create_event_booking(order, booking_data, bookings, access_token=access_token)
    return order


def materialize_staged(payment_order: PaymentOrder, *, bookings=None, source="webhook"):
    """Webhook-side materialization from the snapshot staged by verify."""
    payment_order.refresh_from_db()
    if payment_order.app_order_id:
        logger.info(
            "Order already exists (%s) for %s, skipping creation", payment_order.app_order_id, payment_order.gateway_order_id
        )
        return None
    if payment_order.booking_declined_at:
        logger.info("Order for %s was declined as a duplicate booking; skipping creation", payment_order.gateway_order_id)
        return None
    if not payment_order.staged_order:
        logger.info("No staged order data for %s yet; waiting for verify", payment_order.gateway_order_id)
        return None
    try:
        return materialize_order(payment_order, payment_order.staged_order, access_token=None, bookings=bookings, source=source)
    except MaterializationError as e:
        logger.error("Staged order data for %s is unusable: %s", payment_order.gateway_order_id, e)
        return None


def repair_order_children(payment_order: PaymentOrder) -> dict:
    """Fill in items/history missing after a partial failure. Never recreates the Order."""
    repaired = {"items": 0, "history": False}
    if not payment_order.app_order_id:
        return repaired
    order = Order.objects.filter(pk=payment_order.app_order_id).first()
    if order is None:
        return repaired
    pending = payment_order.staged_order or {}
    repaired["items"] = create_order_items(order, pending.get("orderItems"))
    repaired["history"] = ensure_status_history(order, pending.get("status") or order.status, "Order history repaired by reconciliation")
    return repaired
