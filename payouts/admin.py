from django.contrib import admin

from .models import PayoutRequest, SellerAccount


@admin.register(PayoutRequest)
class PayoutRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "seller", "status", "requested_amount", "net_payable_amount", "payment_reference", "created_at")
    search_fields = ("seller__username", "seller__email", "payment_reference")
    list_filter = ("status", "payment_method", "created_at")
    raw_id_fields = ("seller", "resolved_by")
    # Status changes go through payouts.services so the version guard applies
    readonly_fields = (
        "status", "requested_amount", "platform_commission", "gst_on_commission",
        "total_deductions", "net_payable_amount", "resolved_by", "resolved_at",
        "version", "created_at", "updated_at",
    )


admin.site.register(SellerAccount)
