from django.contrib import admin

from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "seller", "price_paise", "discount_pct", "status", "created_at")
    search_fields = ("title", "seller__username", "seller__email")
    list_filter = ("status", "created_at")
    raw_id_fields = ("seller",)
    readonly_fields = ("created_at", "updated_at")
