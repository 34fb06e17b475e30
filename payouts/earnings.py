"""Seller balance derived from paid orders and payout requests."""
from dataclasses import dataclass

from django.db.models import Count, Q, Sum

from payments.models import Order
from payments.utils import amount_str

from .models import PayoutRequest
from .state import RESERVING, PayoutStatus


@dataclass(frozen=True)
class EarningsSummary:
    total_revenue: int
    pending_withdrawals: int
    withdrawn: int
    available_balance: int
    paid_order_count: int

    def as_dict(self) -> dict:
        return {
            "totalEarnings": amount_str(self.total_revenue),
            "pendingWithdrawals": amount_str(self.pending_withdrawals),
            "withdrawn": amount_str(self.withdrawn),
            "availableBalance": amount_str(self.available_balance),
            "paidOrders": self.paid_order_count,
        }


def seller_earnings(seller) -> EarningsSummary:
    """Revenue from paid orders minus everything pending or already approved.

    Callers that act on the result must hold the seller's account lock
    (see ``payouts.services.request_payout``).
    """
    orders = Order.objects.filter(seller=seller, status=Order.Status.PAID).aggregate(
        revenue=Sum("seller_amount"),
        count=Count("id"),
    )
    payouts = PayoutRequest.objects.filter(seller=seller).aggregate(
        pending=Sum("requested_amount", filter=Q(status=PayoutStatus.PENDING)),
        withdrawn=Sum("requested_amount", filter=Q(status=PayoutStatus.APPROVED)),
        reserved=Sum("requested_amount", filter=Q(status__in=RESERVING)),
    )
    revenue = orders["revenue"] or 0
    pending = payouts["pending"] or 0
    withdrawn = payouts["withdrawn"] or 0
    return EarningsSummary(
        total_revenue=revenue,
        pending_withdrawals=pending,
        withdrawn=withdrawn,
        available_balance=revenue - (payouts["reserved"] or 0),
        paid_order_count=orders["count"],
    )
