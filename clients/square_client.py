"""
Square client for hosted payment links and webhook verification.

Creates Square "quick pay" payment links for an invoice's outstanding balance
and verifies the HMAC-SHA256 signature Square attaches to webhook deliveries.
Everything else the gateway does (card storage, charging, settlement) stays
on Square's side.
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://connect.squareup.com"
SANDBOX_BASE_URL = "https://connect.squareupsandbox.com"
SQUARE_API_VERSION = "2024-06-04"
SIGNATURE_HEADER = "x-square-hmacsha256-signature"


class SquareClientError(Exception):
    """Raised when a Square API request fails."""


@dataclass(frozen=True)
class PaymentLink:
    """A hosted payment page created by the gateway."""

    link_id: str
    url: str


class SquareClient:
    """Square REST client with explicit timeouts and fail-fast config."""

    def __init__(
        self,
        access_token: str,
        location_id: str,
        webhook_signature_key: str,
        environment: str = "sandbox",
        currency: str = "USD",
        timeout_seconds: float = 10.0,
    ):
        """
        Initialize with Square credentials.

        Args:
            access_token: Square API access token
            location_id: Square location receiving the payments
            webhook_signature_key: Key used to sign webhook notifications
            environment: "sandbox" or "production"
            currency: ISO 4217 code for price_money
            timeout_seconds: Per-request timeout

        Raises:
            ValueError: If any credential is empty or environment is unknown
        """
        if not access_token:
            raise ValueError("access_token is required")
        if not location_id:
            raise ValueError("location_id is required")
        if not webhook_signature_key:
            raise ValueError("webhook_signature_key is required")
        if environment not in ("sandbox", "production"):
            raise ValueError(f"Unknown Square environment: {environment}")

        self.access_token = access_token
        self.location_id = location_id
        self.webhook_signature_key = webhook_signature_key
        self.base_url = PRODUCTION_BASE_URL if environment == "production" else SANDBOX_BASE_URL
        self.currency = currency
        self.timeout_seconds = timeout_seconds

    def _post(self, path: str, payload: dict) -> dict:
        """
        POST JSON to the Square API.

        Raises:
            SquareClientError: On connection failure, invalid JSON or API error
        """
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Square-Version": SQUARE_API_VERSION,
        }

        try:
            response = requests.post(
                f"{self.base_url}{path}",
                data=json.dumps(payload),
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            logger.error("Square connection failed: %s", e)
            raise SquareClientError(f"Connection failed: {e}") from e

        try:
            response_data = response.json()
        except ValueError:
            logger.error("Square returned invalid JSON: %s", response.text)
            raise SquareClientError("Invalid response from Square")

        if response.status_code >= 400 or response_data.get("errors"):
            errors = response_data.get("errors") or [{}]
            detail = errors[0].get("detail", "Unknown error")
            logger.error("Square API error (%s): %s", response.status_code, detail)
            raise SquareClientError(f"Square error: {detail}")

        return response_data

    def create_payment_link(
        self,
        invoice_id: str,
        amount_cents: int,
        customer_email: str | None = None,
        title: str | None = None,
        invoice_number: str | None = None,
    ) -> PaymentLink:
        """
        Create a hosted payment link for an amount in cents.

        The invoice ID doubles as the idempotency key prefix so a retried
        request for the same balance returns the same link.

        Raises:
            ValueError: If amount_cents is not positive
            SquareClientError: On any gateway failure
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        name = title or "Invoice"
        if invoice_number:
            name = f"{name} ({invoice_number})"

        payload = {
            "idempotency_key": f"{invoice_id}-{amount_cents}",
            "quick_pay": {
                "name": name,
                "price_money": {"amount": amount_cents, "currency": self.currency},
                "location_id": self.location_id,
            },
            # Square echoes this back on the payment; webhooks use it to find the invoice
            "payment_note": invoice_id,
        }
        if customer_email:
            payload["pre_populated_data"] = {"buyer_email": customer_email}

        data = self._post("/v2/online-checkout/payment-links", payload)
        link = data.get("payment_link") or {}
        if not link.get("url") or not link.get("id"):
            raise SquareClientError("Square response did not include a payment link")

        logger.info("Payment link %s created for invoice %s", link["id"], invoice_id)
        return PaymentLink(link_id=link["id"], url=link["url"])

    def verify_webhook_signature(self, body: str, signature: str, notification_url: str) -> bool:
        """
        Check a webhook delivery's signature.

        Square signs notification_url + raw body with HMAC-SHA256 and sends
        the base64 digest in the x-square-hmacsha256-signature header.
        """
        if not signature:
            return False
        digest = hmac.new(
            self.webhook_signature_key.encode("utf-8"),
            (notification_url + body).encode("utf-8"),
            hashlib.sha256,
        ).digest()
        expected = base64.b64encode(digest).decode("utf-8")
        return hmac.compare_digest(expected, signature)
