"""
Thin Razorpay REST client.

Only the calls the subscription flow needs: orders, payment lookups and
signature checks. Amounts sent to and received from the gateway are in
the currency's smallest unit (paise for INR).
"""
import hashlib
import hmac
import logging
from decimal import ROUND_HALF_UP

import requests
from django.conf import settings

from core.utils import to_money

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


def to_subunits(amount):
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _sign(secret, message):
    if isinstance(message, str):
        message = message.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id, payment_id, signature, secret=None):
    """Checkout signature: HMAC-SHA256 of "order_id|payment_id" with the key secret."""
    secret = secret if secret is not None else settings.RAZORPAY_KEY_SECRET
    if not (secret and order_id and payment_id and signature):
        return False
    expected = _sign(secret, f"{order_id}|{payment_id}")
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(body, signature, secret=None):
    """Webhook signature: HMAC-SHA256 of the raw request body with the webhook secret."""
    secret = secret if secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
    if not (secret and signature):
        return False
    expected = _sign(secret, body)
    return hmac.compare_digest(expected, signature)


class RazorpayClient:
    def __init__(self, key_id=None, key_secret=None, base_url=None, timeout=None):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_API_BASE).rstrip('/')
        self.timeout = timeout or settings.RAZORPAY_TIMEOUT
        self.session = requests.Session()
        self.session.auth = (self.key_id, self.key_secret)

    @property
    def is_configured(self):
        return bool(self.key_id and self.key_secret)

    def _request(self, method, path, **kwargs):
        if not self.is_configured:
            raise GatewayError('Payment gateway is not configured')

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("Razorpay %s %s failed: %s", method, path, e)
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            description = (payload.get('error') or {}).get('description') or response.text[:200]
            logger.warning("Razorpay %s %s returned %s: %s", method, path, response.status_code, description)
            raise GatewayError(description, status_code=response.status_code, payload=payload)

        return response.json()

    def create_order(self, amount, currency, receipt, notes=None):
        return self._request('POST', '/orders', json={
            'amount': amount,
            'currency': currency,
            'receipt': receipt,
            'notes': notes or {},
        })

    def fetch_order(self, order_id):
        return self._request('GET', f'/orders/{order_id}')

    def fetch_payment(self, payment_id):
        return self._request('GET', f'/payments/{payment_id}')


def get_client():
    return RazorpayClient()
