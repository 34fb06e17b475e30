import json

from django.test import RequestFactory, SimpleTestCase

from marketplace.exceptions import AlreadyResolved, InsufficientBalance, MarketplaceError, NotFound
from marketplace.middleware import MarketplaceErrorMiddleware


class ErrorHandlerTests(SimpleTestCase):
    def test_unknown_url_answers_json_404(self):
        response = self.client.get('/this-url-does-not-exist/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"ok": False, "error": "Not found"})

    def test_health(self):
        self.assertEqual(self.client.get('/health').json(), {"ok": True})


class MarketplaceErrorMiddlewareTests(SimpleTestCase):
    def setUp(self):
        self.middleware = MarketplaceErrorMiddleware(lambda request: None)
        self.request = RequestFactory().post('/payouts/requests')

    def test_errors_keep_their_status(self):
        cases = [
            (InsufficientBalance("Insufficient balance: available ₹0.00"), 400),
            (NotFound(), 404),
            (AlreadyResolved(), 409),
        ]
        for exc, status in cases:
            with self.subTest(error=type(exc).__name__):
                response = self.middleware.process_exception(self.request, exc)
                self.assertEqual(response.status_code, status)
                body = json.loads(response.content)
                self.assertFalse(body["ok"])
                self.assertEqual(body["error"], exc.message)
                self.assertEqual(body["code"], type(exc).__name__)

    def test_default_message(self):
        self.assertEqual(MarketplaceError().message, "Request could not be processed")

    def test_other_exceptions_pass_through(self):
        self.assertIsNone(self.middleware.process_exception(self.request, RuntimeError("boom")))
