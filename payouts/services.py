import logging

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from marketplace.exceptions import (
    AlreadyResolved,
    BelowMinimumThreshold,
    InsufficientBalance,
    NotFound,
    ValidationError,
)
from payments.pricing import calculate_payout_breakdown
from payments.utils import format_inr, rupees_to_paise

from . import emails
from .earnings import seller_earnings
from .models import PayoutRequest, SellerAccount
from .state import PaymentMethod, PayoutStatus, assert_transition, clean_resolution, clean_text

logger = logging.getLogger(__name__)

CANCELLED_BY_SELLER = "Cancelled by seller"


def minimum_payout_amount() -> int:
    return rupees_to_paise(getattr(settings, "PAYOUT_MINIMUM_AMOUNT", "500"))


def get_payout(payout_id, *, seller=None) -> PayoutRequest:
    qs = PayoutRequest.objects.select_related("seller")
    if seller is not None:
        qs = qs.filter(seller=seller)
    try:
        return qs.get(pk=payout_id)
    except (PayoutRequest.DoesNotExist, ValueError, TypeError):
        raise NotFound("Payout not found")


def request_payout(seller, amount: int) -> PayoutRequest:
    """Reserve ``amount`` paise of the seller's balance as a pending payout.

    The balance is read and the request written while the seller's
    account row is locked, so concurrent requests cannot both spend the
    same balance.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Payout amount must be positive")
    minimum = minimum_payout_amount()
    if amount < minimum:
        raise BelowMinimumThreshold(f"Minimum payout is {format_inr(minimum)}")
    breakdown = calculate_payout_breakdown(amount)

    SellerAccount.objects.get_or_create(seller=seller)
    with transaction.atomic():
        SellerAccount.objects.select_for_update().get(seller=seller)
        summary = seller_earnings(seller)
        if amount > summary.available_balance:
            raise InsufficientBalance(
                f"Insufficient balance: available {format_inr(max(summary.available_balance, 0))}"
            )
        payout = PayoutRequest.objects.create(
            seller=seller,
            requested_amount=breakdown.requested_amount,
            platform_commission=breakdown.platform_commission,
            gst_on_commission=breakdown.gst_on_commission,
            total_deductions=breakdown.total_deductions,
            net_payable_amount=breakdown.net_payable_amount,
        )
        transaction.on_commit(lambda: emails.send_payout_requested(payout=payout))

    logger.info(
        "Payout %s requested by seller=%s amount=%s net=%s",
        payout.pk, seller.pk, payout.requested_amount, payout.net_payable_amount,
    )
    return payout


def _resolve(payout: PayoutRequest, new_status: str, *, changes: dict, notify: bool = True) -> PayoutRequest:
    assert_transition(payout.status, new_status)
    now = timezone.now()
    with transaction.atomic():
        updated = PayoutRequest.objects.filter(
            pk=payout.pk, status=PayoutStatus.PENDING, version=payout.version,
        ).update(status=new_status, resolved_at=now, updated_at=now, version=F("version") + 1, **changes)
        if not updated:
            # Another admin got there first
            raise AlreadyResolved("Payout was resolved by someone else")
        payout.refresh_from_db()
        if notify:
            transaction.on_commit(lambda: emails.send_payout_resolved(payout=payout))

    logger.info("Payout %s %s (seller=%s)", payout.pk, new_status, payout.seller_id)
    return payout


def approve_payout(payout_id, payment_reference, notes=None, *, admin=None,
                   payment_method=PaymentMethod.MANUAL) -> PayoutRequest:
    payout = get_payout(payout_id)
    assert_transition(payout.status, PayoutStatus.APPROVED)
    reference = clean_resolution(PayoutStatus.APPROVED, reference=payment_reference)
    if not isinstance(payment_method, str) or payment_method not in PaymentMethod.values:
        raise ValidationError(f"Unknown payment method: {payment_method}")
    return _resolve(payout, PayoutStatus.APPROVED, changes={
        "payment_reference": reference,
        "payment_notes": clean_text(notes, "payment_notes"),
        "payment_method": payment_method,
        "resolved_by": admin,
    })


def reject_payout(payout_id, reason, *, admin=None) -> PayoutRequest:
    payout = get_payout(payout_id)
    assert_transition(payout.status, PayoutStatus.REJECTED)
    reason = clean_resolution(PayoutStatus.REJECTED, reason=reason)
    return _resolve(payout, PayoutStatus.REJECTED, changes={
        "rejection_reason": reason,
        "resolved_by": admin,
    })


def cancel_payout(seller, payout_id) -> PayoutRequest:
    payout = get_payout(payout_id, seller=seller)
    return _resolve(payout, PayoutStatus.REJECTED, changes={
        "rejection_reason": CANCELLED_BY_SELLER,
        "resolved_by": seller,
    }, notify=False)


def pending_payouts():
    return PayoutRequest.objects.filter(status=PayoutStatus.PENDING).select_related("seller").order_by("-created_at")


def payouts_for_seller(seller):
    return PayoutRequest.objects.filter(seller=seller).order_by("-created_at")


def all_payouts(status=None):
    qs = PayoutRequest.objects.select_related("seller", "resolved_by").order_by("-created_at", "-pk")
    if status:
        if status not in PayoutStatus.values:
            raise ValidationError(f"Unknown payout status: {status}")
        qs = qs.filter(status=status)
    return qs
