from django.conf import settings
from django.core.validators import MaxValueValidator
from django.db import models


class Product(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="products")
    title = models.CharField(max_length=200)
    price_paise = models.PositiveBigIntegerField()
    discount_pct = models.PositiveSmallIntegerField(default=0, validators=[MaxValueValidator(100)])
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    rejection_reason = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    @property
    def is_approved(self) -> bool:
        return self.status == self.Status.APPROVED

    def __str__(self):
        return f"{self.title} ({self.status})"
