from django.conf import settings
from django.db import models

from payments.pricing import PayoutBreakdown

from .state import PaymentMethod, PayoutStatus


class SellerAccount(models.Model):
    """Per-seller row locked while a payout request checks the balance."""

    seller = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="seller_account")
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"SellerAccount({self.seller_id})"


class PayoutRequest(models.Model):
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="payout_requests")

    # paise
    requested_amount = models.PositiveBigIntegerField()
    platform_commission = models.PositiveBigIntegerField()
    gst_on_commission = models.PositiveBigIntegerField()
    total_deductions = models.PositiveBigIntegerField()
    net_payable_amount = models.PositiveBigIntegerField()

    status = models.CharField(max_length=16, choices=PayoutStatus.choices, default=PayoutStatus.PENDING, db_index=True)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.MANUAL)
    payment_reference = models.CharField(max_length=128, blank=True, default="")  # UTR / transfer reference
    payment_notes = models.TextField(blank=True, default="")
    rejection_reason = models.CharField(max_length=255, blank=True, default="")

    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="resolved_payouts"
    )
    resolved_at = models.DateTimeField(blank=True, null=True)
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    @property
    def financial_breakdown(self) -> PayoutBreakdown:
        return PayoutBreakdown(
            requested_amount=self.requested_amount,
            platform_commission=self.platform_commission,
            gst_on_commission=self.gst_on_commission,
            total_deductions=self.total_deductions,
            net_payable_amount=self.net_payable_amount,
        )

    @property
    def is_pending(self) -> bool:
        return self.status == PayoutStatus.PENDING

    def __str__(self):
        return f"Payout#{self.pk} {self.status} {self.requested_amount}"
