import hashlib
import hmac
import json
from unittest.mock import patch

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from django.urls import reverse

from catalog.models import Product
from marketplace.exceptions import InvalidSignature, ValidationError

from . import services
from .models import Invoice, Order

User = get_user_model()


def sign(body: bytes) -> str:
    return hmac.new(settings.RAZORPAY_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


def captured_event(gateway_order_id, payment_id="pay_W1", event="payment.captured") -> bytes:
    return json.dumps({
        "event": event,
        "payload": {
            "payment": {"entity": {"id": payment_id, "order_id": gateway_order_id, "status": "captured"}},
        },
    }).encode()


class GatewayWebhookTests(TestCase):
    def setUp(self):
        seller = User.objects.create_user(username="seller", email="seller@example.com", password="x")
        self.buyer = User.objects.create_user(username="buyer", email="buyer@example.com", password="x")
        product = Product.objects.create(
            seller=seller, title="Template pack", price_paise=50000, status=Product.Status.APPROVED,
        )
        with patch("payments.integrations.gateway.create_order", return_value={"id": "order_WH1"}):
            handle = services.create_order(self.buyer, product.pk)
        self.order = Order.objects.get(order_id=handle.order_id)
        self.url = reverse("payments:webhook")

    def post(self, body: bytes, signature: str):
        return self.client.post(
            self.url, data=body, content_type="application/json",
            headers={"X-Razorpay-Signature": signature},
        )

    def test_captured_event_marks_order_paid(self):
        body = captured_event("order_WH1")
        with self.captureOnCommitCallbacks(execute=True):
            resp = self.post(body, sign(body))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAID)
        self.assertEqual(self.order.gateway_payment_id, "pay_W1")
        self.assertEqual(self.order.last_gateway_payload["event"], "payment.captured")
        self.assertEqual(len(mail.outbox), 2)

    def test_duplicate_delivery_is_idempotent(self):
        body = captured_event("order_WH1")
        with self.captureOnCommitCallbacks(execute=True):
            self.post(body, sign(body))
        self.order.refresh_from_db()
        first_paid_at = self.order.paid_at

        with self.captureOnCommitCallbacks(execute=True):
            resp = self.post(body, sign(body))

        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.paid_at, first_paid_at)
        self.assertEqual(Invoice.objects.filter(order=self.order).count(), 1)
        self.assertEqual(len(mail.outbox), 2)

    def test_order_paid_event_uses_order_entity(self):
        body = json.dumps({
            "event": "order.paid",
            "payload": {"order": {"entity": {"id": "order_WH1", "status": "paid"}}},
        }).encode()
        resp = self.post(body, sign(body))
        self.assertEqual(resp.json()["status"], "ok")
        self.order.refresh_from_db()
        self.assertTrue(self.order.is_paid)

    def test_bad_signature_is_rejected_without_changes(self):
        body = captured_event("order_WH1")
        resp = self.post(body, "0" * 64)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "InvalidSignature")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CREATED)

    def test_missing_signature_header(self):
        body = captured_event("order_WH1")
        resp = self.client.post(self.url, data=body, content_type="application/json")
        self.assertEqual(resp.status_code, 400)

    def test_unknown_gateway_order_is_acknowledged(self):
        body = captured_event("order_UNKNOWN")
        resp = self.post(body, sign(body))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "unknown order")

    def test_failed_payment_fails_the_order(self):
        body = captured_event("order_WH1", event="payment.failed")
        resp = self.post(body, sign(body))
        self.assertEqual(resp.json()["status"], "ok")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.FAILED)

    def test_failure_notice_after_payment_changes_nothing(self):
        paid = captured_event("order_WH1")
        self.post(paid, sign(paid))
        failed = captured_event("order_WH1", payment_id="pay_W0", event="payment.failed")
        resp = self.post(failed, sign(failed))
        self.assertEqual(resp.json()["status"], "already paid")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAID)

    def test_unrelated_event_is_ignored(self):
        body = captured_event("order_WH1", event="refund.created")
        resp = self.post(body, sign(body))
        self.assertEqual(resp.json()["status"], "ignored")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CREATED)

    def test_capture_after_failure_is_reported_as_conflict(self):
        services.mark_failed(self.order.order_id)
        body = captured_event("order_WH1")
        resp = self.post(body, sign(body))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "conflict")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.FAILED)

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get(self.url).status_code, 405)


class HandleWebhookTests(TestCase):
    def test_invalid_json_with_valid_signature(self):
        body = b"not json"
        with self.assertRaises(ValidationError):
            services.handle_webhook(body, sign(body))

    def test_signature_checked_before_parsing(self):
        with self.assertRaises(InvalidSignature):
            services.handle_webhook(b"not json", "bad")

    def test_missing_secret_refuses_everything(self):
        body = captured_event("order_X")
        with self.settings(RAZORPAY_WEBHOOK_SECRET=""):
            with self.assertRaises(InvalidSignature):
                services.handle_webhook(body, sign(body))


class MalformedWebhookBodyTests(TestCase):
    def test_non_object_entities_are_treated_as_unknown(self):
        for inner in ("oops", ["x"], {"entity": "oops"}, 5):
            with self.subTest(payment=inner):
                body = json.dumps({"event": "payment.captured", "payload": {"payment": inner, "order": inner}}).encode()
                self.assertEqual(services.handle_webhook(body, sign(body)), "unknown order")

    def test_non_object_payload(self):
        body = json.dumps({"event": "payment.captured", "payload": "oops"}).encode()
        self.assertEqual(services.handle_webhook(body, sign(body)), "unknown order")
