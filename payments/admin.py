from django.contrib import admin

from .models import Invoice, Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_id", "status", "amount", "seller_amount", "platform_fee_amount", "buyer", "seller", "created_at")
    search_fields = ("order_id", "gateway_order_id", "gateway_payment_id", "buyer__email", "seller__email")
    list_filter = ("status", "currency", "created_at")
    # Status moves only through payments.services so paid orders stay paid
    readonly_fields = (
        "order_id", "buyer", "seller", "product", "status", "currency",
        "gateway_order_id", "gateway_payment_id",
        "amount", "platform_fee_amount", "gst_amount", "seller_amount",
        "created_at", "updated_at", "paid_at", "last_gateway_payload",
    )

    def has_add_permission(self, request):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("number", "order", "platform_fee", "gst_on_platform_fee", "total_platform_amount", "issued_at")
    search_fields = ("number", "order__order_id")
    readonly_fields = ("issued_at",)
