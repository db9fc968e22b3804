import json
import logging
import os
from typing import NamedTuple

import razorpay
from razorpay.errors import BadRequestError, GatewayError, ServerError
from requests import RequestException

logger = logging.getLogger(__name__)


class RazorpayError(Exception):
    def __init__(self, message, status_code=None, data=None):
        super().__init__(message)
        self.status_code = status_code
        self.data = data


class RazorpaySecrets(NamedTuple):
    key_id: str
    key_secret: str
    webhook_secret: str
    allow_unsigned_webhooks: bool = False


def _read_keys_file(path: str) -> dict:
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)
    except ValueError as e:
        raise RazorpayError(f"Failed to parse Razorpay secrets from {path}: {e}")


def load_secrets(settings) -> RazorpaySecrets:
    """Resolve credentials once: settings/env first, then the JSON keys file."""
    from_disk = _read_keys_file(getattr(settings, "RAZORPAY_KEYS_FILE", ""))
    key_id = getattr(settings, "RAZORPAY_KEY_ID", "") or from_disk.get("keyId", "")
    key_secret = getattr(settings, "RAZORPAY_KEY_SECRET", "") or from_disk.get("keySecret", "")
    if not (key_id and key_secret):
        logger.warning(
            "Missing Razorpay credentials. Provide RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET or a keys file."
        )
    return RazorpaySecrets(
        key_id=key_id,
        key_secret=key_secret,
        webhook_secret=getattr(settings, "RAZORPAY_WEBHOOK_SECRET", "") or "",
        allow_unsigned_webhooks=bool(getattr(settings, "RAZORPAY_WEBHOOK_ALLOW_UNSIGNED", False)),
    )


class RazorpayClient:
    """Orders/payments calls through the official ``razorpay`` SDK.

    SDK and transport errors are re-raised as :class:`RazorpayError` with an
    HTTP-like ``status_code`` so views can map them to responses.
    """

    def __init__(self, secrets: RazorpaySecrets, base_url="https://api.razorpay.com", timeout=10.0):
        self.secrets = secrets
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = None

    @property
    def client(self) -> razorpay.Client:
        if not (self.secrets.key_id and self.secrets.key_secret):
            raise RazorpayError("Missing Razorpay credentials")
        if self._client is None:
            self._client = razorpay.Client(
                auth=(self.secrets.key_id, self.secrets.key_secret), base_url=self.base_url
            )
        return self._client

    def _call(self, action: str, fn, *args, **kwargs) -> dict:
        try:
            return fn(*args, timeout=self.timeout, **kwargs)
        except BadRequestError as e:
            # the SDK reports rejected credentials as a bad request
            if "authentication" in str(e).lower():
                raise RazorpayError(
                    f"{action} failed: Authentication failed. Check RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET.",
                    status_code=401,
                )
            raise RazorpayError(f"{action} failed: {e or 'Bad request.'}", status_code=400)
        except GatewayError as e:
            raise RazorpayError(f"{action} failed: {e}", status_code=502)
        except ServerError as e:
            raise RazorpayError(f"{action} failed: {e}", status_code=500)
        except (RequestException, ValueError) as e:
            raise RazorpayError(f"{action} failed: gateway request failed: {e}")

    def create_order(self, *, amount: int, currency: str, receipt=None, notes=None, payment_capture=False) -> dict:
        data = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "payment_capture": 1 if payment_capture else 0,
        }
        return self._call("Create order", self.client.order.create, data=data)

    def fetch_order(self, order_id: str) -> dict:
        return self._call("Fetch order", self.client.order.fetch, order_id)

    def fetch_order_payments(self, order_id: str) -> dict:
        return self._call("Fetch order payments", self.client.order.payments, order_id)

    def capture_payment(self, payment_id: str, amount: int, currency: str) -> dict:
        return self._call("Capture payment", self.client.payment.capture, payment_id, amount, data={"currency": currency})
