import uuid
from decimal import Decimal

from django.test import TestCase

from .models import Order, OrderStatusHistory


class OrderModelTests(TestCase):
    def test_as_dict_serializes_money_as_strings(self):
        order = Order.objects.create(
            user_id=uuid.uuid4(), order_type="puja", total_amount=Decimal("500.00"), currency="INR"
        )
        data = order.as_dict()
        self.assertEqual(data["total_amount"], "500.00")
        self.assertIsNone(data["temple_id"])
        self.assertEqual(data["payment_status"], "pending")

    def test_history_str_marks_first_entry(self):
        order = Order.objects.create(user_id=uuid.uuid4(), order_type="event")
        entry = OrderStatusHistory.objects.create(order=order, status="pending")
        self.assertEqual(str(entry), f"{order.pk}: - -> pending")
