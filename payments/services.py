import json
import logging
from dataclasses import asdict, dataclass

from django.db import transaction
from django.utils import timezone

from catalog.models import Product
from marketplace.exceptions import AlreadyResolved, InvalidSignature, NotFound, ValidationError

from . import emails
from .integrations import gateway
from .integrations.gateway import GatewayError
from .models import Invoice, Order
from .pricing import calculate_price, invoice_gst
from .utils import generate_invoice_number, generate_order_id

logger = logging.getLogger(__name__)

# Events that mean money was captured against the gateway order
PAID_EVENTS = {"payment.captured", "order.paid"}
FAILED_EVENT = "payment.failed"


@dataclass(frozen=True)
class CheckoutHandle:
    order_id: str
    gateway_order_id: str
    key_id: str
    amount: int
    currency: str
    status: str

    def as_dict(self) -> dict:
        return asdict(self)


def _unique_order_id() -> str:
    oid = generate_order_id()
    attempts = 0
    while Order.objects.filter(order_id=oid).exists() and attempts < 5:
        oid = generate_order_id()
        attempts += 1
    return oid


def get_order(order_id: str, *, buyer=None) -> Order:
    qs = Order.objects.select_related("product", "buyer", "seller")
    if buyer is not None:
        qs = qs.filter(buyer=buyer)
    try:
        return qs.get(order_id=order_id)
    except Order.DoesNotExist:
        raise NotFound("Order not found")


def create_order(buyer, product_id) -> CheckoutHandle:
    """Price an approved product and open a gateway order for it.

    The gateway order is requested before anything is written, so a
    gateway failure leaves no local order behind.  A fully discounted
    product never reaches the gateway and is settled immediately.
    """
    try:
        product = Product.objects.get(pk=product_id)
    except (Product.DoesNotExist, ValueError, TypeError):
        raise NotFound("Product not found")
    if not product.is_approved:
        raise NotFound("Product not found")
    if product.seller_id == buyer.pk:
        raise ValidationError("You cannot buy your own product")

    price = calculate_price(product.price_paise, product.discount_pct)
    order_id = _unique_order_id()

    gateway_order_id = ""
    if price.final_total > 0:
        data = gateway.create_order(
            amount=price.final_total,
            receipt=order_id,
            notes={"product_id": str(product.pk), "buyer_id": str(buyer.pk)},
        )
        gateway_order_id = data.get("id") or ""
        if not gateway_order_id:
            raise GatewayError("Gateway order id missing in response")

    with transaction.atomic():
        order = Order.objects.create(
            order_id=order_id,
            buyer=buyer,
            seller_id=product.seller_id,
            product=product,
            amount=price.final_total,
            platform_fee_amount=price.platform_fee,
            gst_amount=price.gst,
            seller_amount=price.seller_amount,
            gateway_order_id=gateway_order_id,
        )
        if price.final_total == 0:
            order = _settle_paid(order, payment_id="", payload={"free": True})

    logger.info(
        "Order %s created for product=%s buyer=%s total=%s fee=%s gst=%s",
        order.order_id, product.pk, buyer.pk, order.amount, order.platform_fee_amount, order.gst_amount,
    )
    return CheckoutHandle(
        order_id=order.order_id,
        gateway_order_id=gateway_order_id,
        key_id=gateway.public_key_id(),
        amount=order.amount,
        currency=order.currency,
        status=order.status,
    )


def _settle_paid(order: Order, *, payment_id: str, payload: dict) -> Order:
    order.status = Order.Status.PAID
    order.gateway_payment_id = payment_id or order.gateway_payment_id
    order.paid_at = timezone.now()
    order.last_gateway_payload = payload
    order.save(update_fields=["status", "gateway_payment_id", "paid_at", "last_gateway_payload", "updated_at"])

    fee_gst = invoice_gst(order.platform_fee_amount)
    Invoice.objects.get_or_create(
        order=order,
        defaults={
            "number": generate_invoice_number(),
            "platform_fee": order.platform_fee_amount,
            "gst_on_platform_fee": fee_gst,
            "total_platform_amount": order.platform_fee_amount + fee_gst,
        },
    )

    transaction.on_commit(lambda: emails.send_purchase_confirmation(order=order))
    logger.info("Order %s marked paid (payment=%s)", order.order_id, payment_id or "-")
    return order


@transaction.atomic
def record_payment(order_pk: int, payment_id: str, payload: dict) -> Order:
    """Move an order to ``paid`` once; repeats of the same callback are no-ops."""
    order = Order.objects.select_for_update().get(pk=order_pk)
    if order.status == Order.Status.PAID:
        return order
    if order.status == Order.Status.FAILED:
        raise AlreadyResolved("Order has already failed")
    return _settle_paid(order, payment_id=payment_id, payload=payload)


def mark_paid(order_id: str, payment_id: str, signature: str) -> Order:
    order = get_order(order_id)
    if not payment_id:
        raise ValidationError("payment_id is required")
    if not gateway.verify_payment_signature(order.gateway_order_id, payment_id, signature):
        logger.warning("Invalid payment signature for order %s payment=%s", order.order_id, payment_id)
        raise InvalidSignature("Payment signature verification failed")
    return record_payment(order.pk, payment_id, {"payment_id": payment_id, "source": "checkout"})


@transaction.atomic
def mark_failed(order_id: str, *, buyer=None) -> Order:
    order = get_order(order_id, buyer=buyer)
    order = Order.objects.select_for_update().get(pk=order.pk)
    if order.status == Order.Status.FAILED:
        return order
    if order.status == Order.Status.PAID:
        raise AlreadyResolved("Order is already paid")
    order.status = Order.Status.FAILED
    order.save(update_fields=["status", "updated_at"])
    logger.info("Order %s marked failed", order.order_id)
    return order


def _entity(body, key: str) -> dict:
    """``payload.<key>.entity`` from a webhook body, or ``{}`` when any level is not an object."""
    wrapper = body.get(key) if isinstance(body, dict) else None
    entity = wrapper.get("entity") if isinstance(wrapper, dict) else None
    return entity if isinstance(entity, dict) else {}


def handle_webhook(raw_body: bytes, signature: str) -> str:
    """Apply a signed gateway webhook.  Returns a short outcome label."""
    if not gateway.verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected webhook with invalid signature")
        raise InvalidSignature("Invalid webhook signature")

    try:
        payload = json.loads((raw_body or b"").decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON")

    event = str(payload.get("event") or "")
    body = payload.get("payload")
    payment = _entity(body, "payment")
    gw_order = _entity(body, "order")
    gateway_order_id = str(payment.get("order_id") or gw_order.get("id") or "")

    if event not in PAID_EVENTS and event != FAILED_EVENT:
        logger.info("Webhook %s for %s acknowledged without change", event or "<none>", gateway_order_id or "-")
        return "ignored"

    order = Order.objects.filter(gateway_order_id=gateway_order_id).first() if gateway_order_id else None
    if order is None:
        logger.warning("Webhook %s for unknown gateway order %s", event, gateway_order_id or "-")
        return "unknown order"

    if event == FAILED_EVENT:
        try:
            mark_failed(order.order_id)
        except AlreadyResolved:
            # A late failure notice for an attempt on an order that was paid
            return "already paid"
        return "ok"

    try:
        record_payment(order.pk, str(payment.get("id") or ""), payload)
    except AlreadyResolved:
        logger.error("Payment captured for failed order %s; needs manual refund", order.order_id)
        return "conflict"
    return "ok"


def orders_for_buyer(buyer, status=None):
    qs = Order.objects.filter(buyer=buyer).select_related("product")
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("-created_at")


def orders_for_seller(seller, status=None):
    qs = Order.objects.filter(seller=seller).select_related("product")
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("-created_at")
