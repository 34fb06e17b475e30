import logging
from typing import List

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from .utils import format_inr

logger = logging.getLogger(__name__)


def _fail_silently() -> bool:
    return getattr(settings, "EMAIL_FAIL_SILENTLY", True)


def _from_email():
    return getattr(settings, "DEFAULT_FROM_EMAIL", None) or getattr(settings, "EMAIL_HOST_USER", None)


def admin_recipients() -> List[str]:
    # Comma-separated list via env or settings; fall back to DEFAULT_FROM_EMAIL/host user
    raw = getattr(settings, "PAYMENTS_ADMIN_EMAILS", None)
    if not raw:
        raw = ",".join([
            getattr(settings, "EMAIL_HOST_USER", "") or "",
            getattr(settings, "DEFAULT_FROM_EMAIL", "") or "",
        ])
    emails = [e.strip() for e in (raw or "").split(",") if e and e.strip()]
    seen = set()
    uniq: List[str] = []
    for e in emails:
        if e.lower() not in seen:
            seen.add(e.lower())
            uniq.append(e)
    return uniq


def send_templated(*, subject: str, template: str, context: dict, to: List[str]) -> None:
    """Render ``<template>.txt`` / ``<template>.html`` and send them as one message."""
    text = render_to_string(f"{template}.txt", context)
    html = render_to_string(f"{template}.html", context)
    msg = EmailMultiAlternatives(subject, text, _from_email(), to)
    msg.attach_alternative(html, "text/html")
    msg.send(fail_silently=_fail_silently())


def send_purchase_confirmation(*, order) -> None:
    """Tell the buyer their purchase went through and the seller that they made a sale."""
    context = {
        "order_id": order.order_id,
        "product_title": order.product.title,
        "amount": format_inr(order.amount),
        "seller_amount": format_inr(order.seller_amount),
        "platform_fee": format_inr(order.platform_fee_amount),
        "gst": format_inr(order.gst_amount),
        "invoice_number": getattr(getattr(order, "invoice", None), "number", ""),
    }

    try:
        if order.buyer.email:
            send_templated(
                subject=f"Purchase successful: {order.product.title} – {context['amount']}",
                template="emails/purchase_receipt_buyer",
                context=context,
                to=[order.buyer.email],
            )
    except Exception:
        logger.exception("Failed to send purchase receipt for %s", order.order_id)

    try:
        if order.seller.email:
            send_templated(
                subject=f"New order paid: {order.product.title} – {context['amount']}",
                template="emails/sale_notification_seller",
                context=context,
                to=[order.seller.email],
            )
    except Exception:
        logger.exception("Failed to send sale notification for %s", order.order_id)
