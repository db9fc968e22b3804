"""Client for the external event-booking service.

Bookings have been stored in three shapes over time; every one of them is
reduced here to a set of ``(date, slot)`` pairs before comparing:

* ``preferredDate: "2026-01-10"`` with ``preferredTimeSlot: "morning"``
* ``preferredDate: ["2026-01-10", ...]`` with a parallel ``preferredTimeSlot`` list
* ``preferredTimeSlot: {"2026-01-10": "morning" | ["morning", ...]}``

New bookings are always written in the date-list plus date->slot map shape.
"""

import logging

import requests
from requests import RequestException

logger = logging.getLogger(__name__)


class BookingServiceError(Exception):
    pass


def normalize_date(value):
    if not value or not isinstance(value, str):
        return None
    return value.split("T", 1)[0]


def _as_list(value):
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def booking_slots(booking: dict) -> set:
    """Every (date, slot) pair a booking (stored or requested) occupies."""
    dates = booking.get("preferredDate")
    slots = booking.get("preferredTimeSlot")
    pairs = set()

    if isinstance(slots, dict):
        for day, day_slots in slots.items():
            for slot in _as_list(day_slots):
                if normalize_date(day) and isinstance(slot, str) and slot:
                    pairs.add((normalize_date(day), slot))
        return pairs

    if isinstance(dates, list):
        if isinstance(slots, list):
            for day, slot in zip(dates, slots):
                if normalize_date(day) and isinstance(slot, str) and slot:
                    pairs.add((normalize_date(day), slot))
        elif isinstance(slots, str) and slots:
            pairs.update((normalize_date(day), slots) for day in dates if normalize_date(day))
        return pairs

    if normalize_date(dates) and slots and isinstance(slots, str):
        pairs.add((normalize_date(dates), slots))
    return pairs


def find_conflicting_booking(existing_bookings, requested: dict):
    wanted = booking_slots(requested)
    if not wanted:
        return None
    for booking in existing_bookings or []:
        if isinstance(booking, dict) and booking_slots(booking) & wanted:
            return booking
    return None


def build_booking_payload(booking_data: dict, order_id: str) -> dict:
    pairs = sorted(booking_slots(booking_data))

    payload = dict(booking_data)
    payload["preferredDate"] = [day for day, _ in pairs]
    payload["preferredTimeSlot"] = {day: slot for day, slot in pairs}
    payload["members"] = list(booking_data.get("members") or [])
    payload["numberOfPeople"] = booking_data.get("numberOfPeople") or max(len(payload["members"]), 1)
    payload["orderId"] = order_id
    return payload


def _auth_headers(access_token) -> dict:
    headers = {"Content-Type": "application/json"}
    if access_token:
        headers["Authorization"] = access_token if access_token.startswith("Bearer ") else f"Bearer {access_token}"
    return headers


class BookingServiceClient:
    def __init__(self, base_url: str, timeout=10.0):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def list_user_bookings(self, user_id: str, access_token=None) -> list:
        url = f"{self.base_url}/launch-event/rudraksha-bookings"
        try:
            resp = requests.get(
                url, params={"userId": user_id}, headers=_auth_headers(access_token), timeout=self.timeout
            )
            resp.raise_for_status()
            body = resp.json()
        except (RequestException, ValueError) as e:
            raise BookingServiceError(f"Booking lookup failed: {e}")

        if not body.get("success"):
            return []
        bookings = (body.get("data") or {}).get("bookings")
        return bookings if isinstance(bookings, list) else []

    def create_booking(self, payload: dict, access_token=None) -> dict:
        url = f"{self.base_url}/launch-event/rudraksha-booking"
        try:
            resp = requests.post(url, json=payload, headers=_auth_headers(access_token), timeout=self.timeout)
            resp.raise_for_status()
        except RequestException as e:
            raise BookingServiceError(f"Booking creation failed: {e}")
        try:
            return resp.json()
        except ValueError:
            return {}
