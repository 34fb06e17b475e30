import hashlib
import hmac
import json
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone

from catalog.models import Product
from marketplace.exceptions import AlreadyResolved, InvalidSignature, NotFound, ValidationError

from . import services
from .integrations.gateway import GatewayError
from .models import Invoice, Order
from .pricing import calculate_payout_breakdown, calculate_price, invoice_gst
from .utils import format_inr, rupees_to_paise

User = get_user_model()


def checkout_signature(gateway_order_id, payment_id):
    msg = f"{gateway_order_id}|{payment_id}".encode()
    return hmac.new(settings.RAZORPAY_KEY_SECRET.encode(), msg, hashlib.sha256).hexdigest()


class PricingTests(SimpleTestCase):
    def test_thousand_rupees_with_ten_percent_discount(self):
        price = calculate_price(100000, 10)
        self.assertEqual(price.price_after_discount, 90000)
        self.assertEqual(price.gst, 4500)
        self.assertEqual(price.platform_fee, 1800)
        self.assertEqual(price.final_total, 96300)
        self.assertEqual(price.seller_amount, 94500)

    def test_full_discount_is_zero_everywhere(self):
        price = calculate_price(49900, 100)
        self.assertEqual(
            (price.price_after_discount, price.gst, price.platform_fee, price.final_total),
            (0, 0, 0, 0),
        )

    def test_components_are_rounded_half_up_to_whole_paise(self):
        price = calculate_price(999, 0)
        self.assertEqual(price.gst, 50)  # 49.95
        self.assertEqual(price.platform_fee, 20)  # 19.98
        self.assertEqual(price.final_total, 1069)

    def test_total_is_sum_of_rounded_parts(self):
        for price_paise, discount in [(1, 0), (333, 33), (12345, 7), (99999, 15), (250075, 50), (100, 99)]:
            with self.subTest(price=price_paise, discount=discount):
                p = calculate_price(price_paise, discount)
                self.assertEqual(p.final_total, p.price_after_discount + p.gst + p.platform_fee)
                self.assertEqual(p.final_total, p.seller_amount + p.platform_fee)

    def test_decimal_discount_accepted(self):
        price = calculate_price(100000, Decimal("12.5"))
        self.assertEqual(price.price_after_discount, 87500)

    def test_invalid_inputs(self):
        with self.assertRaises(ValidationError):
            calculate_price(-1, 0)
        with self.assertRaises(ValidationError):
            calculate_price(1000, 101)
        with self.assertRaises(ValidationError):
            calculate_price(1000, -5)
        with self.assertRaises(ValidationError):
            calculate_price(10.5, 0)
        with self.assertRaises(ValidationError):
            calculate_price(1000, "abc")

    def test_payout_breakdown_taxes_commission_only(self):
        b = calculate_payout_breakdown(500000)
        self.assertEqual(b.platform_commission, 50000)
        self.assertEqual(b.gst_on_commission, 9000)
        self.assertEqual(b.total_deductions, 59000)
        self.assertEqual(b.net_payable_amount, 441000)
        self.assertEqual(b.as_dict()["netPayableAmount"], "4410.00")

    def test_invoice_gst_is_eighteen_percent_of_fee(self):
        self.assertEqual(invoice_gst(1800), 324)


class MoneyUtilsTests(SimpleTestCase):
    def test_rupees_to_paise(self):
        self.assertEqual(rupees_to_paise("963"), 96300)
        self.assertEqual(rupees_to_paise("10.005"), 1001)
        self.assertEqual(rupees_to_paise(45), 4500)

    def test_rupees_to_paise_rejects_garbage(self):
        for bad in ("abc", "", "NaN", "inf", True, "1e30", "9" * 40):
            with self.subTest(value=bad):
                with self.assertRaises(ValidationError):
                    rupees_to_paise(bad)

    def test_format_inr(self):
        self.assertEqual(format_inr(96300), "₹963.00")
        self.assertEqual(format_inr(12345678), "₹123,456.78")


class OrderTestMixin:
    def setUp(self):
        self.seller = User.objects.create_user(username="seller", email="seller@example.com", password="x")
        self.buyer = User.objects.create_user(username="buyer", email="buyer@example.com", password="x")
        self.product = Product.objects.create(
            seller=self.seller, title="Notes", price_paise=100000, discount_pct=10,
            status=Product.Status.APPROVED,
        )

    def create_order(self, gateway_order_id="order_GW1"):
        with patch("payments.integrations.gateway.create_order", return_value={"id": gateway_order_id}):
            handle = services.create_order(self.buyer, self.product.pk)
        return Order.objects.get(order_id=handle.order_id)


class CreateOrderTests(OrderTestMixin, TestCase):
    def test_order_amounts_follow_pricing(self):
        with patch("payments.integrations.gateway.create_order", return_value={"id": "order_GW1"}) as create:
            handle = services.create_order(self.buyer, self.product.pk)

        create.assert_called_once()
        self.assertEqual(create.call_args.kwargs["amount"], 96300)
        self.assertEqual(handle.amount, 96300)
        self.assertEqual(handle.gateway_order_id, "order_GW1")
        self.assertEqual(handle.key_id, settings.RAZORPAY_KEY_ID)

        order = Order.objects.get(order_id=handle.order_id)
        self.assertEqual(order.status, Order.Status.CREATED)
        self.assertEqual(order.amount, 96300)
        self.assertEqual(order.platform_fee_amount, 1800)
        self.assertEqual(order.gst_amount, 4500)
        self.assertEqual(order.seller_amount, 94500)
        self.assertEqual(order.amount, order.seller_amount + order.platform_fee_amount)
        self.assertEqual(order.seller, self.seller)

    def test_unknown_product(self):
        with self.assertRaises(NotFound):
            services.create_order(self.buyer, 999999)
        with self.assertRaises(NotFound):
            services.create_order(self.buyer, "not-an-id")

    def test_unapproved_product_is_not_for_sale(self):
        self.product.status = Product.Status.PENDING
        self.product.save()
        with self.assertRaises(NotFound):
            services.create_order(self.buyer, self.product.pk)
        self.assertFalse(Order.objects.exists())

    def test_seller_cannot_buy_own_product(self):
        with self.assertRaises(ValidationError):
            services.create_order(self.seller, self.product.pk)

    def test_gateway_failure_persists_nothing(self):
        with patch("payments.integrations.gateway.create_order", side_effect=GatewayError("down")):
            with self.assertRaises(GatewayError):
                services.create_order(self.buyer, self.product.pk)
        self.assertFalse(Order.objects.exists())

    def test_free_product_is_paid_without_gateway(self):
        self.product.discount_pct = 100
        self.product.save()
        with patch("payments.integrations.gateway.create_order") as create, self.captureOnCommitCallbacks(execute=True):
            handle = services.create_order(self.buyer, self.product.pk)
        create.assert_not_called()
        self.assertEqual(handle.status, Order.Status.PAID)
        self.assertEqual(handle.amount, 0)


class MarkPaidTests(OrderTestMixin, TestCase):
    def test_valid_signature_marks_paid_and_issues_invoice(self):
        order = self.create_order()
        sig = checkout_signature("order_GW1", "pay_1")
        with self.captureOnCommitCallbacks(execute=True):
            services.mark_paid(order.order_id, "pay_1", sig)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAID)
        self.assertEqual(order.gateway_payment_id, "pay_1")
        self.assertIsNotNone(order.paid_at)
        invoice = Invoice.objects.get(order=order)
        self.assertEqual(invoice.platform_fee, 1800)
        self.assertEqual(invoice.gst_on_platform_fee, 324)
        self.assertEqual(invoice.total_platform_amount, 2124)
        recipients = sorted(addr for m in mail.outbox for addr in m.to)
        self.assertEqual(recipients, ["buyer@example.com", "seller@example.com"])

    def test_invalid_signature_changes_nothing(self):
        order = self.create_order()
        with self.assertRaises(InvalidSignature):
            services.mark_paid(order.order_id, "pay_1", "forged")
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CREATED)
        self.assertFalse(Invoice.objects.exists())

    def test_signature_for_other_order_rejected(self):
        order = self.create_order()
        with self.assertRaises(InvalidSignature):
            services.mark_paid(order.order_id, "pay_1", checkout_signature("order_OTHER", "pay_1"))

    def test_repeated_confirmation_is_a_noop(self):
        order = self.create_order()
        sig = checkout_signature("order_GW1", "pay_1")
        with self.captureOnCommitCallbacks(execute=True):
            first = services.mark_paid(order.order_id, "pay_1", sig)
        with self.captureOnCommitCallbacks(execute=True):
            second = services.mark_paid(order.order_id, "pay_1", sig)

        self.assertEqual(first.status, second.status)
        self.assertEqual(first.paid_at, second.paid_at)
        self.assertEqual(Invoice.objects.filter(order=order).count(), 1)
        self.assertEqual(len(mail.outbox), 2)

    def test_amounts_unchanged_after_payment(self):
        order = self.create_order()
        services.mark_paid(order.order_id, "pay_1", checkout_signature("order_GW1", "pay_1"))
        paid = Order.objects.get(pk=order.pk)
        self.assertEqual(
            (paid.amount, paid.seller_amount, paid.platform_fee_amount, paid.gst_amount),
            (order.amount, order.seller_amount, order.platform_fee_amount, order.gst_amount),
        )

    def test_unknown_order(self):
        with self.assertRaises(NotFound):
            services.mark_paid("NOPE", "pay_1", "sig")

    def test_failed_order_cannot_be_paid(self):
        order = self.create_order()
        services.mark_failed(order.order_id)
        with self.assertRaises(AlreadyResolved):
            services.mark_paid(order.order_id, "pay_1", checkout_signature("order_GW1", "pay_1"))


class MarkFailedTests(OrderTestMixin, TestCase):
    def test_created_to_failed(self):
        order = self.create_order()
        services.mark_failed(order.order_id)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.FAILED)

    def test_failed_twice_is_a_noop(self):
        order = self.create_order()
        services.mark_failed(order.order_id)
        again = services.mark_failed(order.order_id)
        self.assertEqual(again.status, Order.Status.FAILED)

    def test_paid_order_cannot_fail(self):
        order = self.create_order()
        services.mark_paid(order.order_id, "pay_1", checkout_signature("order_GW1", "pay_1"))
        with self.assertRaises(AlreadyResolved):
            services.mark_failed(order.order_id)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAID)

    def test_only_the_buyer_can_fail_their_order(self):
        order = self.create_order()
        with self.assertRaises(NotFound):
            services.mark_failed(order.order_id, buyer=self.seller)


class OrderViewTests(OrderTestMixin, TestCase):
    def _post(self, name, payload, **kwargs):
        return self.client.post(
            reverse(name, kwargs=kwargs or None),
            data=json.dumps(payload),
            content_type="application/json",
        )

    def test_checkout_returns_gateway_handle(self):
        self.client.force_login(self.buyer)
        with patch("payments.integrations.gateway.create_order", return_value={"id": "order_GW9"}):
            resp = self._post("payments:create_order", {"product_id": self.product.pk})
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data["gateway_order_id"], "order_GW9")
        self.assertEqual(data["amount"], 96300)
        self.assertEqual(data["currency"], "INR")

    def test_checkout_gateway_error_is_json(self):
        self.client.force_login(self.buyer)
        with patch("payments.integrations.gateway.create_order", side_effect=GatewayError("Create order failed")):
            resp = self._post("payments:create_order", {"product_id": self.product.pk})
        self.assertEqual(resp.status_code, 502)
        self.assertFalse(resp.json()["ok"])

    def test_checkout_missing_product_id(self):
        self.client.force_login(self.buyer)
        resp = self._post("payments:create_order", {})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("product_id", resp.json()["error"])

    def test_verify_with_bad_signature_is_rejected(self):
        order = self.create_order()
        self.client.force_login(self.buyer)
        resp = self._post("payments:verify_payment", {
            "order_id": order.order_id, "payment_id": "pay_1", "signature": "bad",
        })
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "InvalidSignature")

    def test_verify_then_list(self):
        order = self.create_order()
        self.client.force_login(self.buyer)
        resp = self._post("payments:verify_payment", {
            "order_id": order.order_id,
            "payment_id": "pay_1",
            "signature": checkout_signature("order_GW1", "pay_1"),
        })
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["order"]["status"], "paid")

        resp = self.client.get(reverse("payments:my_orders"), {"status": "paid"})
        orders = resp.json()["orders"]
        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0]["amount"], "963.00")
        self.assertEqual(orders[0]["sellerAmount"], "945.00")

    def test_buyer_cancels_checkout(self):
        order = self.create_order()
        self.client.force_login(self.buyer)
        resp = self._post("payments:fail_order", {}, order_id=order.order_id)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["order"]["status"], "failed")

    def test_login_required(self):
        resp = self._post("payments:create_order", {"product_id": self.product.pk})
        self.assertEqual(resp.status_code, 302)


class ReconcileCreatedOrdersTests(OrderTestMixin, TestCase):
    def _age(self, order, minutes):
        Order.objects.filter(pk=order.pk).update(created_at=timezone.now() - timezone.timedelta(minutes=minutes))

    def test_paid_at_gateway_is_settled(self):
        order = self.create_order()
        self._age(order, 5)
        out = StringIO()
        with patch("payments.management.commands.reconcile_created_orders.fetch_order",
                   return_value={"id": "order_GW1", "status": "paid"}), \
             patch("payments.management.commands.reconcile_created_orders.fetch_order_payments",
                   return_value=[{"id": "pay_9", "status": "captured"}]):
            call_command("reconcile_created_orders", "--sleep", "0", stdout=out)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAID)
        self.assertEqual(order.gateway_payment_id, "pay_9")
        self.assertIn("paid", out.getvalue())

    def test_expired_orders_fail(self):
        order = self.create_order()
        self._age(order, 120)
        with patch("payments.management.commands.reconcile_created_orders.fetch_order",
                   return_value={"id": "order_GW1", "status": "attempted"}):
            call_command("reconcile_created_orders", "--sleep", "0", stdout=StringIO())
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.FAILED)

    def test_recent_unpaid_orders_are_left_alone(self):
        order = self.create_order()
        self._age(order, 5)
        with patch("payments.management.commands.reconcile_created_orders.fetch_order",
                   return_value={"id": "order_GW1", "status": "created"}):
            call_command("reconcile_created_orders", "--sleep", "0", stdout=StringIO())
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CREATED)


class MalformedCheckoutInputTests(OrderTestMixin, TestCase):
    def test_numeric_signature_is_rejected_not_crashed(self):
        order = self.create_order()
        self.client.force_login(self.buyer)
        resp = self.client.post(
            reverse("payments:verify_payment"),
            data=json.dumps({"order_id": order.order_id, "payment_id": "pay_1", "signature": 12345}),
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "InvalidSignature")


class OrderAdminTests(OrderTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.admin_user = User.objects.create_superuser(username="root", email="root@example.com", password="x")
        self.client.force_login(self.admin_user)

    def test_status_cannot_be_edited(self):
        order = self.create_order()
        services.mark_paid(order.order_id, "pay_1", checkout_signature("order_GW1", "pay_1"))

        url = reverse("admin:payments_order_change", args=[order.pk])
        resp = self.client.post(url, {"status": "created", "gateway_payment_id": "", "amount": "1"})
        self.assertEqual(resp.status_code, 302)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAID)
        self.assertEqual(order.gateway_payment_id, "pay_1")
        self.assertEqual(order.amount, 96300)

    def test_orders_cannot_be_added(self):
        self.assertEqual(self.client.get(reverse("admin:payments_order_add")).status_code, 403)


class SellerSalesViewTests(OrderTestMixin, TestCase):
    def _pay(self, gateway_order_id, payment_id):
        order = self.create_order(gateway_order_id)
        services.mark_paid(order.order_id, payment_id, checkout_signature(gateway_order_id, payment_id))
        return order

    def test_seller_sees_sales_with_totals(self):
        paid = self._pay("order_GW1", "pay_1")
        self._pay("order_GW2", "pay_2")
        open_order = self.create_order("order_GW3")

        self.client.force_login(self.seller)
        data = self.client.get(reverse("payments:my_sales")).json()
        self.assertEqual(data["total"], 3)
        ids = {s["orderId"] for s in data["sales"]}
        self.assertIn(paid.order_id, ids)
        self.assertIn(open_order.order_id, ids)
        self.assertEqual(data["sales"][0]["buyerEmail"], "buyer@example.com")

        data = self.client.get(reverse("payments:my_sales"), {"status": "paid"}).json()
        self.assertEqual(data["total"], 2)
        self.assertEqual(data["summary"], {
            "totalRevenue": "1926.00",
            "totalPlatformFee": "36.00",
            "totalGst": "90.00",
            "totalEarned": "1890.00",
        })

    def test_buyers_do_not_see_their_purchases_as_sales(self):
        self._pay("order_GW1", "pay_1")
        self.client.force_login(self.buyer)
        data = self.client.get(reverse("payments:my_sales")).json()
        self.assertEqual(data["total"], 0)
        self.assertEqual(data["summary"]["totalEarned"], "0.00")

    def test_unknown_status_filter(self):
        self.client.force_login(self.seller)
        resp = self.client.get(reverse("payments:my_sales"), {"status": "refunded"})
        self.assertEqual(resp.status_code, 400)
