from functools import wraps

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from payments.utils import amount_str, rupees_to_paise
from payments.views import json_body, paginate, require_fields

from . import services
from .earnings import seller_earnings

ADMIN_PAGE_SIZE = 50


def staff_required(view):
    @wraps(view)
    @login_required
    def wrapper(request, *args, **kwargs):
        if not request.user.is_staff:
            return JsonResponse({"ok": False, "error": "Admin access required"}, status=403)
        return view(request, *args, **kwargs)
    return wrapper


def payout_as_dict(payout) -> dict:
    return {
        "id": payout.pk,
        "sellerId": payout.seller_id,
        "status": payout.status,
        "financialBreakdown": payout.financial_breakdown.as_dict(),
        "paymentMethod": payout.payment_method,
        "paymentReference": payout.payment_reference or None,
        "paymentNotes": payout.payment_notes or None,
        "rejectionReason": payout.rejection_reason or None,
        "resolvedAt": payout.resolved_at.isoformat() if payout.resolved_at else None,
        "createdAt": payout.created_at.isoformat(),
    }


def _user_ref(user):
    if user is None:
        return None
    return {"id": user.pk, "name": user.get_full_name() or user.get_username(), "email": user.email}


def payout_detail_as_dict(payout) -> dict:
    return {
        **payout_as_dict(payout),
        "seller": _user_ref(payout.seller),
        "resolvedBy": _user_ref(payout.resolved_by),
        "updatedAt": payout.updated_at.isoformat(),
    }


@login_required
@require_GET
def earnings_view(request):
    summary = seller_earnings(request.user)
    return JsonResponse({
        "ok": True,
        **summary.as_dict(),
        "minimumPayout": amount_str(services.minimum_payout_amount()),
    })


@login_required
@require_http_methods(["GET", "POST"])
def payout_requests_view(request):
    if request.method == "GET":
        payouts = services.payouts_for_seller(request.user)
        return JsonResponse({"ok": True, "payouts": [payout_as_dict(p) for p in payouts]})

    body = json_body(request)
    require_fields(body, "amount")
    payout = services.request_payout(request.user, rupees_to_paise(body["amount"]))
    return JsonResponse({"ok": True, "message": "Withdrawal request submitted", "payout": payout_as_dict(payout)}, status=201)


@login_required
@require_POST
def cancel_payout_view(request, payout_id: int):
    payout = services.cancel_payout(request.user, payout_id)
    return JsonResponse({"ok": True, "payout": payout_as_dict(payout)})


@staff_required
@require_GET
def pending_payouts_view(request):
    payouts = services.pending_payouts()
    return JsonResponse({"ok": True, "payouts": [payout_as_dict(p) for p in payouts]})


@staff_required
@require_GET
def all_payouts_view(request):
    payouts = services.all_payouts(status=request.GET.get("status") or None)
    return JsonResponse(paginate(request, payouts, payout_as_dict, "payouts", page_size=ADMIN_PAGE_SIZE))


@staff_required
@require_GET
def payout_detail_view(request, payout_id: int):
    payout = services.get_payout(payout_id)
    return JsonResponse({"ok": True, "payout": payout_detail_as_dict(payout)})


@staff_required
@require_POST
def approve_payout_view(request, payout_id: int):
    body = json_body(request)
    payout = services.approve_payout(
        payout_id,
        body.get("payment_reference"),
        body.get("payment_notes"),
        admin=request.user,
        payment_method=body.get("payment_method") or "manual",
    )
    return JsonResponse({"ok": True, "message": "Payout marked as paid", "payout": payout_as_dict(payout)})


@staff_required
@require_POST
def reject_payout_view(request, payout_id: int):
    body = json_body(request)
    payout = services.reject_payout(payout_id, body.get("reason"), admin=request.user)
    return JsonResponse({"ok": True, "message": "Payout rejected", "payout": payout_as_dict(payout)})
