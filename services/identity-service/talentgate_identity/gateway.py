"""Razorpay REST client used for checkout orders and payment verification."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Protocol

import httpx
from pydantic import ValidationError as PayloadValidationError

from talentgate_schemas import GatewayOrder, GatewayPayment

from .domain.errors import GatewayError

logger = logging.getLogger(__name__)


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 over ``order_id|payment_id`` as the gateway signs checkout callbacks."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentGateway(Protocol):
    def create_order(
        self, *, amount: int, currency: str, receipt: str | None = None, notes: dict[str, str] | None = None
    ) -> GatewayOrder: ...

    def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...


class RazorpayGateway:
    """Thin synchronous wrapper over the orders and payments endpoints.

    The ``httpx.Client`` is owned by the application lifespan and shared
    between requests. Amounts passed to :meth:`create_order` are in major
    units and converted to paise here.
    """

    def __init__(self, client: httpx.Client, *, key_id: str, key_secret: str) -> None:
        self._client = client
        self._key_id = key_id
        self._key_secret = key_secret

    @classmethod
    def build_client(cls, base_url: str, key_id: str, key_secret: str, timeout: float) -> httpx.Client:
        return httpx.Client(base_url=base_url, auth=(key_id, key_secret), timeout=timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self._key_id and self._key_secret)

    def create_order(
        self, *, amount: int, currency: str, receipt: str | None = None, notes: dict[str, str] | None = None
    ) -> GatewayOrder:
        payload = {
            "amount": amount * 100,
            "currency": currency,
            "receipt": receipt or f"receipt_{int(time.time() * 1000)}",
            "notes": notes or {},
        }
        data = self._request("POST", "/orders", json=payload)
        order = self._parse(GatewayOrder, data)
        logger.info("gateway order created order_id=%s amount=%s %s", order.id, order.amount, order.currency)
        return order

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = self._request("GET", f"/payments/{payment_id}")
        payment = self._parse(GatewayPayment, data)
        logger.info("gateway payment fetched payment_id=%s status=%s", payment.id, payment.status)
        return payment

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = compute_signature(self._key_secret, order_id, payment_id)
        valid = hmac.compare_digest(expected, signature or "")
        logger.info("payment signature checked order_id=%s payment_id=%s valid=%s", order_id, payment_id, valid)
        return valid

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.is_configured:
            raise GatewayError("payment gateway is not configured")
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "gateway request failed method=%s path=%s status=%s",
                method,
                path,
                exc.response.status_code,
            )
            raise GatewayError(
                "payment gateway rejected the request",
                details={"status": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("gateway unreachable method=%s path=%s error=%s", method, path, exc)
            raise GatewayError() from exc
        return response.json()

    @staticmethod
    def _parse(model, data: dict):
        try:
            return model.model_validate(data)
        except PayloadValidationError as exc:
            logger.error("unexpected gateway payload for %s: %s", model.__name__, exc)
            raise GatewayError("unexpected response from payment gateway") from exc
