import logging

from payments.emails import admin_recipients, send_templated
from payments.utils import format_inr

from .state import PayoutStatus

logger = logging.getLogger(__name__)


def _context(payout) -> dict:
    return {
        "payout_id": payout.pk,
        "seller_name": payout.seller.get_full_name() or payout.seller.get_username(),
        "requested_amount": format_inr(payout.requested_amount),
        "platform_commission": format_inr(payout.platform_commission),
        "gst_on_commission": format_inr(payout.gst_on_commission),
        "total_deductions": format_inr(payout.total_deductions),
        "net_payable_amount": format_inr(payout.net_payable_amount),
        "payment_reference": payout.payment_reference,
        "payment_notes": payout.payment_notes,
        "rejection_reason": payout.rejection_reason,
    }


def send_payout_requested(*, payout) -> None:
    try:
        admins = admin_recipients()
        if admins:
            send_templated(
                subject=f"Payout request #{payout.pk}: {format_inr(payout.requested_amount)}",
                template="emails/payout_requested_admin",
                context=_context(payout),
                to=admins,
            )
    except Exception:
        logger.exception("Failed to send payout request notification for payout=%s", payout.pk)


def send_payout_resolved(*, payout) -> None:
    """Fire-and-forget notice to the seller once an admin approves or rejects."""
    if not payout.seller.email:
        return
    if payout.status == PayoutStatus.APPROVED:
        subject = f"Payout sent: {format_inr(payout.net_payable_amount)}"
        template = "emails/payout_approved_seller"
    else:
        subject = f"Payout request #{payout.pk} rejected"
        template = "emails/payout_rejected_seller"
    try:
        send_templated(subject=subject, template=template, context=_context(payout), to=[payout.seller.email])
    except Exception:
        logger.exception("Failed to send payout resolution to %s", payout.seller.email)
