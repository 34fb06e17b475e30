from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="SellerAccount",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("seller", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="seller_account", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="PayoutRequest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("requested_amount", models.PositiveBigIntegerField()),
                ("platform_commission", models.PositiveBigIntegerField()),
                ("gst_on_commission", models.PositiveBigIntegerField()),
                ("total_deductions", models.PositiveBigIntegerField()),
                ("net_payable_amount", models.PositiveBigIntegerField()),
                ("status", models.CharField(choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")], db_index=True, default="pending", max_length=16)),
                ("payment_method", models.CharField(choices=[("manual", "Manual"), ("bank_transfer", "Bank transfer"), ("upi", "UPI")], default="manual", max_length=16)),
                ("payment_reference", models.CharField(blank=True, default="", max_length=128)),
                ("payment_notes", models.TextField(blank=True, default="")),
                ("rejection_reason", models.CharField(blank=True, default="", max_length=255)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("resolved_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="resolved_payouts", to=settings.AUTH_USER_MODEL)),
                ("seller", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payout_requests", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ("-created_at",),
            },
        ),
    ]
