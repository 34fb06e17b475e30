import json
import threading
from itertools import count
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.db import connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, skipUnlessDBFeature
from django.urls import reverse
from django.utils import timezone

from catalog.models import Product
from marketplace.exceptions import (
    AlreadyResolved,
    BelowMinimumThreshold,
    InsufficientBalance,
    MissingReference,
    NotFound,
    ValidationError,
)
from payments.models import Order

from . import services
from .earnings import seller_earnings
from .models import PayoutRequest, SellerAccount
from .state import (
    RESERVING,
    TERMINAL,
    PaymentMethod,
    PayoutStatus,
    assert_transition,
    can_transition,
    clean_resolution,
    clean_text,
)

User = get_user_model()
_order_seq = count(1)


def rupees(value) -> int:
    return int(value * 100)


class SellerFixtureMixin:
    """A seller with paid sales worth ``balance`` paise (after platform fees)."""

    def make_seller(self, username="seller", balance=rupees(3000)):
        seller = User.objects.create_user(username=username, email=f"{username}@example.com", password="x")
        buyer = User.objects.create_user(username=f"{username}-buyer", email=f"{username}-buyer@example.com", password="x")
        product = Product.objects.create(
            seller=seller, title="Course", price_paise=balance, status=Product.Status.APPROVED,
        )
        if balance:
            self.add_sale(seller, buyer, product, balance)
        return seller

    def add_sale(self, seller, buyer, product, seller_amount, status=Order.Status.PAID):
        fee = 100
        return Order.objects.create(
            order_id=f"T{next(_order_seq):08d}",
            buyer=buyer,
            seller=seller,
            product=product,
            amount=seller_amount + fee,
            platform_fee_amount=fee,
            gst_amount=0,
            seller_amount=seller_amount,
            status=status,
            paid_at=timezone.now() if status == Order.Status.PAID else None,
        )


class PayoutStateTests(SimpleTestCase):
    def test_only_pending_moves(self):
        self.assertTrue(can_transition(PayoutStatus.PENDING, PayoutStatus.APPROVED))
        self.assertTrue(can_transition(PayoutStatus.PENDING, PayoutStatus.REJECTED))
        for terminal in (PayoutStatus.APPROVED, PayoutStatus.REJECTED):
            for target in PayoutStatus.values:
                self.assertFalse(can_transition(terminal, target))

    def test_terminal_transition_raises_already_resolved(self):
        with self.assertRaisesMessage(AlreadyResolved, "Payout is already approved"):
            assert_transition(PayoutStatus.APPROVED, PayoutStatus.REJECTED)

    def test_terminal_and_reserving_sets(self):
        self.assertEqual(TERMINAL, {PayoutStatus.APPROVED, PayoutStatus.REJECTED})
        self.assertEqual(RESERVING, {PayoutStatus.PENDING, PayoutStatus.APPROVED})

    def test_clean_text(self):
        self.assertEqual(clean_text(None, "notes"), "")
        self.assertEqual(clean_text("  UTR9 ", "notes"), "UTR9")
        self.assertEqual(clean_text(412345678901, "notes"), "412345678901")
        for bad in ({"utr": 1}, ["UTR"], 1.5, True):
            with self.subTest(value=bad):
                with self.assertRaises(ValidationError):
                    clean_text(bad, "notes")

    def test_non_text_resolution_notes(self):
        self.assertEqual(clean_resolution(PayoutStatus.APPROVED, reference=12345), "12345")
        with self.assertRaises(ValidationError):
            clean_resolution(PayoutStatus.REJECTED, reason=["no"])

    def test_resolution_notes_are_required(self):
        with self.assertRaises(MissingReference):
            clean_resolution(PayoutStatus.APPROVED, reference="   ")
        with self.assertRaises(ValidationError):
            clean_resolution(PayoutStatus.REJECTED, reason="")
        self.assertEqual(clean_resolution(PayoutStatus.APPROVED, reference=" UTR1 "), "UTR1")


class EarningsTests(SellerFixtureMixin, TestCase):
    def test_only_paid_orders_count(self):
        seller = self.make_seller(balance=rupees(3000))
        buyer = User.objects.get(username="seller-buyer")
        product = seller.products.get()
        self.add_sale(seller, buyer, product, rupees(999), status=Order.Status.CREATED)
        self.add_sale(seller, buyer, product, rupees(999), status=Order.Status.FAILED)

        summary = seller_earnings(seller)
        self.assertEqual(summary.total_revenue, rupees(3000))
        self.assertEqual(summary.paid_order_count, 1)
        self.assertEqual(summary.available_balance, rupees(3000))

    def test_pending_and_approved_are_withheld(self):
        seller = self.make_seller(balance=rupees(3000))
        first = services.request_payout(seller, rupees(1000))
        services.request_payout(seller, rupees(500))
        services.approve_payout(first.pk, "UTR-1")

        summary = seller_earnings(seller)
        self.assertEqual(summary.withdrawn, rupees(1000))
        self.assertEqual(summary.pending_withdrawals, rupees(500))
        self.assertEqual(summary.available_balance, rupees(1500))
        self.assertEqual(summary.as_dict()["availableBalance"], "1500.00")

    def test_new_seller_has_nothing(self):
        seller = self.make_seller(balance=0)
        summary = seller_earnings(seller)
        self.assertEqual((summary.total_revenue, summary.available_balance, summary.paid_order_count), (0, 0, 0))


class RequestPayoutTests(SellerFixtureMixin, TestCase):
    def setUp(self):
        self.seller = self.make_seller(balance=rupees(3000))

    def test_request_records_breakdown_and_notifies_admins(self):
        with self.captureOnCommitCallbacks(execute=True):
            payout = services.request_payout(self.seller, rupees(2000))

        self.assertEqual(payout.status, PayoutStatus.PENDING)
        self.assertEqual(payout.requested_amount, 200000)
        self.assertEqual(payout.platform_commission, 20000)
        self.assertEqual(payout.gst_on_commission, 3600)
        self.assertEqual(payout.total_deductions, 23600)
        self.assertEqual(payout.net_payable_amount, 176400)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["admin@example.com"])

    def test_more_than_balance_is_refused(self):
        with self.assertRaises(InsufficientBalance):
            services.request_payout(self.seller, rupees(5000))
        self.assertFalse(PayoutRequest.objects.exists())

    def test_below_minimum_is_refused(self):
        with self.assertRaises(BelowMinimumThreshold):
            services.request_payout(self.seller, rupees(499))
        self.assertFalse(PayoutRequest.objects.exists())

    def test_minimum_follows_settings(self):
        with self.settings(PAYOUT_MINIMUM_AMOUNT="100"):
            payout = services.request_payout(self.seller, rupees(150))
        self.assertEqual(payout.requested_amount, rupees(150))

    def test_non_positive_amount(self):
        for bad in (0, -100, True, "500"):
            with self.subTest(amount=bad):
                with self.assertRaises(ValidationError):
                    services.request_payout(self.seller, bad)

    def test_pending_requests_reserve_balance(self):
        services.request_payout(self.seller, rupees(2000))
        with self.assertRaises(InsufficientBalance):
            services.request_payout(self.seller, rupees(1500))
        services.request_payout(self.seller, rupees(1000))
        self.assertEqual(seller_earnings(self.seller).available_balance, 0)


class ResolvePayoutTests(SellerFixtureMixin, TestCase):
    def setUp(self):
        self.seller = self.make_seller(balance=rupees(3000))
        self.admin = User.objects.create_user(username="admin", password="x", is_staff=True)
        self.payout = services.request_payout(self.seller, rupees(2000))

    def test_approve_records_reference(self):
        with self.captureOnCommitCallbacks(execute=True):
            payout = services.approve_payout(
                self.payout.pk, "UTR123", "Sent via NEFT", admin=self.admin,
                payment_method=PaymentMethod.BANK_TRANSFER,
            )
        self.assertEqual(payout.status, PayoutStatus.APPROVED)
        self.assertEqual(payout.payment_reference, "UTR123")
        self.assertEqual(payout.payment_notes, "Sent via NEFT")
        self.assertEqual(payout.payment_method, PaymentMethod.BANK_TRANSFER)
        self.assertEqual(payout.resolved_by, self.admin)
        self.assertIsNotNone(payout.resolved_at)
        self.assertEqual(payout.version, 1)
        self.assertEqual(mail.outbox[-1].to, ["seller@example.com"])
        self.assertIn("1,764.00", mail.outbox[-1].subject)

    def test_approve_twice(self):
        services.approve_payout(self.payout.pk, "UTR123")
        with self.assertRaises(AlreadyResolved):
            services.approve_payout(self.payout.pk, "UTR999")
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.payment_reference, "UTR123")

    def test_approve_needs_reference(self):
        with self.assertRaises(MissingReference):
            services.approve_payout(self.payout.pk, "  ")
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PayoutStatus.PENDING)

    def test_unknown_payment_method(self):
        with self.assertRaises(ValidationError):
            services.approve_payout(self.payout.pk, "UTR1", payment_method="cheque")

    def test_reject_releases_balance(self):
        before = seller_earnings(self.seller).available_balance
        with self.captureOnCommitCallbacks(execute=True):
            payout = services.reject_payout(self.payout.pk, "KYC incomplete", admin=self.admin)
        self.assertEqual(payout.status, PayoutStatus.REJECTED)
        self.assertEqual(payout.rejection_reason, "KYC incomplete")
        self.assertEqual(seller_earnings(self.seller).available_balance, before + rupees(2000))
        self.assertIn("rejected", mail.outbox[-1].subject)

    def test_reject_needs_reason(self):
        with self.assertRaises(ValidationError):
            services.reject_payout(self.payout.pk, "")

    def test_reject_after_approve(self):
        services.approve_payout(self.payout.pk, "UTR123")
        with self.assertRaises(AlreadyResolved):
            services.reject_payout(self.payout.pk, "too late")

    def test_stale_copy_loses_the_race(self):
        stale = PayoutRequest.objects.get(pk=self.payout.pk)
        services.reject_payout(self.payout.pk, "duplicate")
        with self.assertRaises(AlreadyResolved):
            services._resolve(stale, PayoutStatus.APPROVED, changes={"payment_reference": "UTR1"})
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PayoutStatus.REJECTED)
        self.assertEqual(self.payout.payment_reference, "")

    def test_unknown_payout(self):
        with self.assertRaises(NotFound):
            services.approve_payout(999999, "UTR1")

    def test_seller_cancels_own_request(self):
        with self.captureOnCommitCallbacks(execute=True):
            payout = services.cancel_payout(self.seller, self.payout.pk)
        self.assertEqual(payout.status, PayoutStatus.REJECTED)
        self.assertEqual(payout.rejection_reason, services.CANCELLED_BY_SELLER)
        self.assertEqual(mail.outbox, [])

    def test_cannot_cancel_someone_elses_request(self):
        other = self.make_seller(username="other", balance=0)
        with self.assertRaises(NotFound):
            services.cancel_payout(other, self.payout.pk)

    def test_pending_queue(self):
        second = services.request_payout(self.seller, rupees(500))
        services.approve_payout(self.payout.pk, "UTR1")
        self.assertEqual(list(services.pending_payouts()), [second])


class PayoutViewTests(SellerFixtureMixin, TestCase):
    def setUp(self):
        self.seller = self.make_seller(balance=rupees(3000))
        self.admin = User.objects.create_user(username="admin", password="x", is_staff=True)

    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")

    def test_earnings(self):
        self.client.force_login(self.seller)
        data = self.client.get(reverse("payouts:earnings")).json()
        self.assertEqual(data["availableBalance"], "3000.00")
        self.assertEqual(data["minimumPayout"], "500.00")

    def test_request_in_rupees(self):
        self.client.force_login(self.seller)
        resp = self.post_json(reverse("payouts:requests"), {"amount": "2000"})
        self.assertEqual(resp.status_code, 201)
        breakdown = resp.json()["payout"]["financialBreakdown"]
        self.assertEqual(breakdown["netPayableAmount"], "1764.00")

        listing = self.client.get(reverse("payouts:requests")).json()["payouts"]
        self.assertEqual(len(listing), 1)

    def test_request_errors_map_to_status_codes(self):
        self.client.force_login(self.seller)
        resp = self.post_json(reverse("payouts:requests"), {"amount": "5000"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "InsufficientBalance")

        resp = self.post_json(reverse("payouts:requests"), {"amount": "10"})
        self.assertEqual(resp.json()["code"], "BelowMinimumThreshold")

        resp = self.post_json(reverse("payouts:requests"), {"amount": "lots"})
        self.assertEqual(resp.json()["code"], "ValidationError")

    def test_admin_routes_need_staff(self):
        payout = services.request_payout(self.seller, rupees(1000))
        self.client.force_login(self.seller)
        self.assertEqual(self.client.get(reverse("payouts:admin_pending")).status_code, 403)
        resp = self.post_json(reverse("payouts:admin_approve", args=[payout.pk]), {"payment_reference": "X"})
        self.assertEqual(resp.status_code, 403)
        payout.refresh_from_db()
        self.assertTrue(payout.is_pending)

    def test_admin_approves_then_conflict(self):
        payout = services.request_payout(self.seller, rupees(1000))
        self.client.force_login(self.admin)
        pending = self.client.get(reverse("payouts:admin_pending")).json()["payouts"]
        self.assertEqual([p["id"] for p in pending], [payout.pk])

        url = reverse("payouts:admin_approve", args=[payout.pk])
        resp = self.post_json(url, {"payment_reference": "UTR777", "payment_method": "upi"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["payout"]["paymentReference"], "UTR777")

        resp = self.post_json(url, {"payment_reference": "UTR778"})
        self.assertEqual(resp.status_code, 409)

    def test_admin_approve_without_reference(self):
        payout = services.request_payout(self.seller, rupees(1000))
        self.client.force_login(self.admin)
        resp = self.post_json(reverse("payouts:admin_approve", args=[payout.pk]), {})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "MissingReference")

    def test_admin_reject(self):
        payout = services.request_payout(self.seller, rupees(1000))
        self.client.force_login(self.admin)
        resp = self.post_json(reverse("payouts:admin_reject", args=[payout.pk]), {"reason": "Bank details invalid"})
        self.assertEqual(resp.json()["payout"]["rejectionReason"], "Bank details invalid")

    def test_seller_cancel_route(self):
        payout = services.request_payout(self.seller, rupees(1000))
        self.client.force_login(self.seller)
        resp = self.post_json(reverse("payouts:cancel", args=[payout.pk]), {})
        self.assertEqual(resp.json()["payout"]["status"], "rejected")


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentPayoutRequestTests(SellerFixtureMixin, TransactionTestCase):
    def test_parallel_requests_cannot_overdraw(self):
        seller = self.make_seller(balance=rupees(3000))
        results = []
        barrier = threading.Barrier(2)

        def attempt():
            try:
                barrier.wait()
                results.append(services.request_payout(seller, rupees(2000)))
            except InsufficientBalance as e:
                results.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(PayoutRequest.objects.filter(seller=seller).count(), 1)
        self.assertEqual(sum(isinstance(r, InsufficientBalance) for r in results), 1)
        self.assertGreaterEqual(seller_earnings(seller).available_balance, 0)


class PayoutRequestLockTests(SellerFixtureMixin, TestCase):
    """Order of operations inside ``request_payout`` that keeps parallel requests from overdrawing."""

    def test_balance_is_read_after_seller_row_is_locked(self):
        seller = self.make_seller(balance=rupees(3000))
        events = []
        manager = SellerAccount.objects
        real_lock = manager.select_for_update

        def lock(*args, **kwargs):
            events.append("lock")
            return real_lock(*args, **kwargs)

        def read(s):
            events.append("read")
            return seller_earnings(s)

        def create(**kwargs):
            events.append("create")
            return PayoutRequest(**kwargs)

        with patch.object(manager, "select_for_update", side_effect=lock), \
             patch("payouts.services.seller_earnings", side_effect=read), \
             patch.object(PayoutRequest.objects, "create", side_effect=create):
            services.request_payout(seller, rupees(1000))

        self.assertEqual(events, ["lock", "read", "create"])

    def test_every_request_takes_the_lock(self):
        seller = self.make_seller(balance=rupees(3000))
        real_lock = SellerAccount.objects.select_for_update
        with patch.object(SellerAccount.objects, "select_for_update", side_effect=real_lock) as lock:
            services.request_payout(seller, rupees(2000))
            with self.assertRaises(InsufficientBalance):
                services.request_payout(seller, rupees(2000))
        self.assertEqual(lock.call_count, 2)
        self.assertEqual(SellerAccount.objects.filter(seller=seller).count(), 1)
        self.assertEqual(PayoutRequest.objects.filter(seller=seller).count(), 1)

    def test_stale_balance_cannot_outlive_the_reservation(self):
        # Each read happens after the previous request's row is written
        seller = self.make_seller(balance=rupees(3000))
        seen = []

        def read(s):
            summary = seller_earnings(s)
            seen.append(summary.available_balance)
            return summary

        with patch("payouts.services.seller_earnings", side_effect=read):
            services.request_payout(seller, rupees(2000))
            with self.assertRaises(InsufficientBalance):
                services.request_payout(seller, rupees(2000))

        self.assertEqual(seen, [rupees(3000), rupees(1000)])
        self.assertGreaterEqual(seller_earnings(seller).available_balance, 0)


class MalformedResolutionInputTests(SellerFixtureMixin, TestCase):
    def setUp(self):
        self.seller = self.make_seller(balance=rupees(3000))
        self.admin = User.objects.create_user(username="admin", password="x", is_staff=True)
        self.payout = services.request_payout(self.seller, rupees(1000))
        self.client.force_login(self.admin)

    def post_json(self, name, payload):
        return self.client.post(
            reverse(name, args=[self.payout.pk]), data=json.dumps(payload), content_type="application/json",
        )

    def test_numeric_reference_is_stored_as_text(self):
        resp = self.post_json("payouts:admin_approve", {"payment_reference": 412345678901})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["payout"]["paymentReference"], "412345678901")

    def test_object_reference_is_rejected(self):
        resp = self.post_json("payouts:admin_approve", {"payment_reference": {"utr": "X"}})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "ValidationError")
        self.payout.refresh_from_db()
        self.assertTrue(self.payout.is_pending)

    def test_non_text_notes_are_rejected(self):
        resp = self.post_json("payouts:admin_approve", {"payment_reference": "UTR1", "payment_notes": ["a"]})
        self.assertEqual(resp.status_code, 400)
        self.payout.refresh_from_db()
        self.assertTrue(self.payout.is_pending)

    def test_non_text_payment_method_is_rejected(self):
        resp = self.post_json("payouts:admin_approve", {"payment_reference": "UTR1", "payment_method": ["upi"]})
        self.assertEqual(resp.status_code, 400)

    def test_numeric_reason(self):
        resp = self.post_json("payouts:admin_reject", {"reason": 42})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["payout"]["rejectionReason"], "42")

    def test_object_reason_is_rejected(self):
        resp = self.post_json("payouts:admin_reject", {"reason": {"why": "x"}})
        self.assertEqual(resp.status_code, 400)
        self.payout.refresh_from_db()
        self.assertTrue(self.payout.is_pending)

    def test_oversized_amount(self):
        self.client.force_login(self.seller)
        resp = self.client.post(
            reverse("payouts:requests"), data=json.dumps({"amount": "1e30"}), content_type="application/json",
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "ValidationError")


class AdminPayoutListTests(SellerFixtureMixin, TestCase):
    def setUp(self):
        self.seller = self.make_seller(balance=rupees(10000))
        self.admin = User.objects.create_user(
            username="admin", first_name="Asha", last_name="Rao", email="admin@example.com",
            password="x", is_staff=True,
        )
        self.approved = services.request_payout(self.seller, rupees(1000))
        services.approve_payout(self.approved.pk, "UTR1", "NEFT", admin=self.admin)
        self.rejected = services.request_payout(self.seller, rupees(600))
        services.reject_payout(self.rejected.pk, "Wrong IFSC", admin=self.admin)
        self.pending = services.request_payout(self.seller, rupees(700))

    def test_all_payouts_newest_first(self):
        self.client.force_login(self.admin)
        data = self.client.get(reverse("payouts:admin_all")).json()
        self.assertEqual(data["total"], 3)
        self.assertEqual(
            [p["id"] for p in data["payouts"]],
            [self.pending.pk, self.rejected.pk, self.approved.pk],
        )

    def test_status_filter(self):
        self.client.force_login(self.admin)
        data = self.client.get(reverse("payouts:admin_all"), {"status": "approved"}).json()
        self.assertEqual([p["id"] for p in data["payouts"]], [self.approved.pk])

    def test_unknown_status_filter(self):
        self.client.force_login(self.admin)
        resp = self.client.get(reverse("payouts:admin_all"), {"status": "paid"})
        self.assertEqual(resp.status_code, 400)

    def test_pagination(self):
        self.client.force_login(self.admin)
        with patch("payouts.views.ADMIN_PAGE_SIZE", 2):
            first = self.client.get(reverse("payouts:admin_all")).json()
            second = self.client.get(reverse("payouts:admin_all"), {"page": 2}).json()
        self.assertEqual(len(first["payouts"]), 2)
        self.assertTrue(first["has_next"])
        self.assertEqual([p["id"] for p in second["payouts"]], [self.approved.pk])
        self.assertTrue(second["has_prev"])
        self.assertFalse(second["has_next"])

    def test_detail(self):
        self.client.force_login(self.admin)
        payout = self.client.get(reverse("payouts:admin_detail", args=[self.approved.pk])).json()["payout"]
        self.assertEqual(payout["status"], "approved")
        self.assertEqual(payout["paymentReference"], "UTR1")
        self.assertEqual(payout["paymentNotes"], "NEFT")
        self.assertEqual(payout["financialBreakdown"]["netPayableAmount"], "882.00")
        self.assertEqual(payout["seller"]["email"], "seller@example.com")
        self.assertEqual(payout["resolvedBy"]["name"], "Asha Rao")
        self.assertIsNotNone(payout["resolvedAt"])
        self.assertIn("updatedAt", payout)

    def test_detail_of_pending_has_no_resolver(self):
        self.client.force_login(self.admin)
        payout = self.client.get(reverse("payouts:admin_detail", args=[self.pending.pk])).json()["payout"]
        self.assertIsNone(payout["resolvedBy"])

    def test_detail_unknown(self):
        self.client.force_login(self.admin)
        self.assertEqual(self.client.get(reverse("payouts:admin_detail", args=[999999])).status_code, 404)

    def test_sellers_cannot_browse(self):
        self.client.force_login(self.seller)
        self.assertEqual(self.client.get(reverse("payouts:admin_all")).status_code, 403)
        self.assertEqual(self.client.get(reverse("payouts:admin_detail", args=[self.pending.pk])).status_code, 403)
