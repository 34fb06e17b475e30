import json
import logging

from django.contrib.auth.decorators import login_required
from django.db.models import Sum
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from marketplace.exceptions import ValidationError

from . import services
from .integrations.gateway import GatewayError
from .models import Order
from .utils import amount_str

logger = logging.getLogger(__name__)

PAGE_SIZE = 10


def json_body(request) -> dict:
    try:
        body = json.loads(request.body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def require_fields(body: dict, *names) -> None:
    missing = [k for k in names if not body.get(k)]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}")


def page_number(request) -> int:
    try:
        page = int(request.GET.get("page", "1"))
    except ValueError:
        page = 1
    return max(page, 1)


def order_as_dict(order) -> dict:
    return {
        "orderId": order.order_id,
        "productId": order.product_id,
        "productTitle": order.product.title,
        "status": order.status,
        "amount": amount_str(order.amount),
        "platformFeeAmount": amount_str(order.platform_fee_amount),
        "gstAmount": amount_str(order.gst_amount),
        "sellerAmount": amount_str(order.seller_amount),
        "currency": order.currency,
        "createdAt": order.created_at.isoformat(),
        "paidAt": order.paid_at.isoformat() if order.paid_at else None,
    }


@login_required
@require_POST
def create_order_view(request):
    body = json_body(request)
    require_fields(body, "product_id")
    try:
        handle = services.create_order(request.user, body["product_id"])
    except GatewayError as e:
        logger.error("Checkout for product %s failed: %s", body["product_id"], e.message)
        return JsonResponse({"ok": False, "error": e.message}, status=e.status_code)
    return JsonResponse({"ok": True, **handle.as_dict()}, status=201)


@login_required
@require_POST
def verify_payment_view(request):
    body = json_body(request)
    require_fields(body, "order_id", "payment_id", "signature")
    order = services.mark_paid(body["order_id"], body["payment_id"], body["signature"])
    return JsonResponse({"ok": True, "order": order_as_dict(order)})


@login_required
@require_POST
def fail_order_view(request, order_id: str):
    order = services.mark_failed(order_id, buyer=request.user)
    return JsonResponse({"ok": True, "order": order_as_dict(order)})


def paginate(request, qs, serialize, key: str, page_size: int = PAGE_SIZE) -> dict:
    page = page_number(request)
    start = (page - 1) * page_size
    end = start + page_size
    total = qs.count()
    return {
        "ok": True,
        key: [serialize(obj) for obj in qs[start:end]],
        "page": page,
        "has_next": end < total,
        "has_prev": start > 0,
        "total": total,
    }


def order_status_filter(request):
    status = request.GET.get("status") or None
    if status is not None and status not in Order.Status.values:
        raise ValidationError(f"Unknown order status: {status}")
    return status


def sale_as_dict(order) -> dict:
    return {
        **order_as_dict(order),
        "buyerName": order.buyer.get_full_name() or order.buyer.get_username(),
        "buyerEmail": order.buyer.email,
    }


@login_required
@require_GET
def my_orders_view(request):
    qs = services.orders_for_buyer(request.user, status=order_status_filter(request))
    return JsonResponse(paginate(request, qs, order_as_dict, "orders"))


@login_required
@require_GET
def my_sales_view(request):
    """Orders placed against the seller's products, with totals over the filtered set."""
    qs = services.orders_for_seller(request.user, status=order_status_filter(request))
    totals = qs.aggregate(
        revenue=Sum("amount"),
        platform_fees=Sum("platform_fee_amount"),
        gst=Sum("gst_amount"),
        earned=Sum("seller_amount"),
    )
    data = paginate(request, qs.select_related("buyer"), sale_as_dict, "sales")
    data["summary"] = {
        "totalRevenue": amount_str(totals["revenue"] or 0),
        "totalPlatformFee": amount_str(totals["platform_fees"] or 0),
        "totalGst": amount_str(totals["gst"] or 0),
        "totalEarned": amount_str(totals["earned"] or 0),
    }
    return JsonResponse(data)
