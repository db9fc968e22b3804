GATEWAY_NAME = "razorpay"

PAYMENT_ORDER_CREATION_FAILED = "Failed to create the Razorpay order."
PAYMENT_ORDER_NOT_FOUND = "Payment order not found."
PAYMENT_ORDER_ALREADY_PROCESSED = "Payment order is already processed."
PAYMENT_SIGNATURE_INVALID = "Razorpay payment signature verification failed."
PAYMENT_CAPTURE_FAILED = "Failed to capture Razorpay payment."
PAYMENT_DETAILS_FETCH_FAILED = "Unable to fetch Razorpay payment details."
USER_ID_REQUIRED = "User identifier (userId) is required."
ORDER_TYPE_REQUIRED = "Order type (orderType) is required."

WEBHOOK_SIGNATURE_INVALID = "Webhook signature verification failed."
WEBHOOK_PAYLOAD_INVALID = "Invalid webhook payload."
WEBHOOK_PROCESSING_FAILED = "Failed to process webhook event."
WEBHOOK_EVENT_UNSUPPORTED = "Unsupported webhook event type."

EVENT_PAYMENT_AUTHORIZED = "payment.authorized"
EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"
EVENT_ORDER_PAID = "order.paid"
EVENT_REFUND_CREATED = "refund.created"
EVENT_REFUND_PROCESSED = "refund.processed"

ORDER_TYPES = ("darshan", "puja", "prasad", "product", "event")
ORDER_STATUSES = ("pending", "confirmed", "processing", "ready", "shipped", "completed", "cancelled", "refunded")
