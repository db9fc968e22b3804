from django.apps import apps
from django.core.management.base import BaseCommand
from django.utils import timezone
from orders.models import Order
from payments.models import PaymentOrder
from payments.services import materialize_staged, repair_order_children

class Command(BaseCommand):
    help = "Create missing orders for paid payment orders and repair orders missing items or history"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--older-than-minutes", type=int, default=5)
        parser.add_argument("--dry-run", action="store_true")

    def handle(self, *args, **opts):
        cutoff = timezone.now() - timezone.timedelta(minutes=opts["older_than_minutes"])
        bookings = apps.get_app_config("payments").bookings

        pending = PaymentOrder.objects.awaiting_materialization().filter(updated_at__lt=cutoff).order_by("updated_at")[:opts["max"]]
        for po in pending:
            if opts["dry_run"]:
                self.stdout.write(f"Would create order for {po.gateway_order_id}")
                continue
            order = materialize_staged(po, bookings=bookings, source="reconciliation")
            if order is None:
                self.stdout.write(self.style.WARNING(f"{po.gateway_order_id}: no order created"))
            else:
                self.stdout.write(self.style.SUCCESS(f"Created order {order.pk} for {po.gateway_order_id}"))

        materialized = PaymentOrder.objects.filter(app_order_id__isnull=False, staged_order__isnull=False)
        order_ids = materialized.values_list("app_order_id", flat=True)
        incomplete = set(
            Order.objects.filter(pk__in=order_ids, status_history__isnull=True).values_list("pk", flat=True)
        ) | set(
            Order.objects.filter(pk__in=order_ids, items__isnull=True).values_list("pk", flat=True)
        )
        repaired = 0
        for po in materialized.filter(app_order_id__in=incomplete).order_by("updated_at")[:opts["max"]]:
            has_history = Order.objects.filter(pk=po.app_order_id, status_history__isnull=False).exists()
            # an order staged without items is complete once it has history
            if has_history and not po.staged_order.get("orderItems"):
                continue
            if opts["dry_run"]:
                self.stdout.write(f"Would repair order {po.app_order_id} for {po.gateway_order_id}")
                continue
            result = repair_order_children(po)
            if result["items"] or result["history"]:
                repaired += 1
                self.stdout.write(self.style.SUCCESS(
                    f"Repaired order {po.app_order_id}: {result['items']} items, history={result['history']}"
                ))

        if not pending and not repaired:
            self.stdout.write(self.style.SUCCESS("No payment orders to reconcile."))
