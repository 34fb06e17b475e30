import time

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from marketplace.exceptions import AlreadyResolved
from payments import services
from payments.integrations.gateway import GatewayError, fetch_order, fetch_order_payments
from payments.models import Order


class Command(BaseCommand):
    help = "Poll the gateway for orders stuck in 'created' and settle or expire them"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=1)
        parser.add_argument("--expire-after-minutes", type=int, default=None)

    def handle(self, *args, **opts):
        now = timezone.now()
        cutoff = now - timezone.timedelta(minutes=opts["older_than_minutes"])
        expire_minutes = opts["expire_after_minutes"] or getattr(settings, "ORDER_EXPIRY_MINUTES", 30)
        expiry_cutoff = now - timezone.timedelta(minutes=expire_minutes)

        qs = (
            Order.objects.filter(status=Order.Status.CREATED, created_at__lt=cutoff)
            .order_by("created_at")[:opts["max"]]
        )
        orders = list(qs)
        if not orders:
            self.stdout.write(self.style.SUCCESS("No created orders to reconcile."))
            return

        for o in orders:
            try:
                data = fetch_order(o.gateway_order_id)
                if str(data.get("status", "")).lower() == "paid":
                    captured = [p for p in fetch_order_payments(o.gateway_order_id) if p.get("status") == "captured"]
                    payment_id = captured[0].get("id", "") if captured else ""
                    services.record_payment(o.pk, payment_id, {"source": "reconcile", "order": data})
                    self.stdout.write(self.style.SUCCESS(f"Updated {o.order_id} -> paid"))
                elif o.created_at < expiry_cutoff:
                    services.mark_failed(o.order_id)
                    self.stdout.write(self.style.WARNING(f"Expired {o.order_id} -> failed"))
                else:
                    self.stdout.write(f"{o.order_id}: still {data.get('status', 'unknown')}")
            except GatewayError as e:
                self.stdout.write(self.style.WARNING(f"{o.order_id}: {e}"))
            except AlreadyResolved as e:
                self.stdout.write(self.style.WARNING(f"{o.order_id}: {e.message}"))
            if opts["sleep"]:
                time.sleep(opts["sleep"])
