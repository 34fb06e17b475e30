from django.conf import settings
from django.db import models


class Order(models.Model):
    class Status(models.TextChoices):
        CREATED = "created", "Created"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"

    order_id = models.CharField(max_length=20, unique=True, db_index=True)
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="purchases")
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="sales")
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name="orders")

    # paise
    amount = models.PositiveBigIntegerField()
    platform_fee_amount = models.PositiveBigIntegerField()
    gst_amount = models.PositiveBigIntegerField()
    seller_amount = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=8, default="INR")

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.CREATED, db_index=True)

    gateway_order_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    gateway_payment_id = models.CharField(max_length=64, blank=True, default="")
    last_gateway_payload = models.JSONField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    paid_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount=models.F("seller_amount") + models.F("platform_fee_amount")),
                name="order_amount_splits_into_seller_and_fee",
            ),
        ]

    @property
    def is_paid(self) -> bool:
        return self.status == self.Status.PAID

    def __str__(self):
        return f"{self.order_id} ({self.status})"


class Invoice(models.Model):
    order = models.OneToOneField(Order, on_delete=models.PROTECT, related_name="invoice")
    number = models.CharField(max_length=32, unique=True)
    platform_fee = models.PositiveBigIntegerField()
    gst_on_platform_fee = models.PositiveBigIntegerField()
    total_platform_amount = models.PositiveBigIntegerField()
    issued_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.number
