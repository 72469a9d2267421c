# Overview: HTTP client for the external payment provider (create and verify payments).

"""
The provider is an opaque capability:
- create_payment(): ask the provider to collect an amount; returns its reference
- get_payment_status(): ask the provider what happened to a reference

RETRY POLICY:
- status reads are idempotent and are retried with exponential backoff
- payment creation is NEVER retried (a retried POST can double-charge)
Transport errors and 5xx responses surface as PaymentProviderUnavailable,
never as a declined payment.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx
from flask import current_app

from ..errors import PaymentProviderUnavailable, PaymentRequestRejected

logger = logging.getLogger(__name__)

PROVIDER_OUTCOMES = ("SUCCEEDED", "FAILED", "CANCELLED", "REFUNDED", "PENDING")


@dataclass(frozen=True)
class ProviderPayment:
    reference: str
    status: str
    amount_cents: int | None = None


class PaymentProviderClient:
    def __init__(
        self,
        base_url: str,
        secret: str = "",
        *,
        timeout: float = 15.0,
        verify_attempts: int = 3,
        verify_backoff: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout = timeout
        self.verify_attempts = max(1, verify_attempts)
        self.verify_backoff = verify_backoff
        self.transport = transport

    def _client(self) -> httpx.Client:
        headers = {"Accept": "application/json"}
        if self.secret:
            headers["Authorization"] = f"Bearer {self.secret}"
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _parse(response: httpx.Response) -> ProviderPayment:
        try:
            data = response.json()
        except ValueError:
            raise PaymentProviderUnavailable("Payment provider returned an invalid response")
        if not isinstance(data, dict) or not data.get("reference"):
            raise PaymentProviderUnavailable("Payment provider returned an invalid response")

        status = str(data.get("status") or "PENDING").upper()
        if status not in PROVIDER_OUTCOMES:
            logger.warning("Unknown provider payment status", extra={"status": status})
            status = "PENDING"
        amount = data.get("amount_cents")
        return ProviderPayment(
            reference=str(data["reference"]),
            status=status,
            amount_cents=amount if isinstance(amount, int) else None,
        )

    def create_payment(
        self,
        *,
        order_number: str,
        amount_cents: int,
        method: str,
        provider: str | None = None,
        phone: str | None = None,
    ) -> ProviderPayment:
        """Single attempt; never retried."""
        payload = {
            "order_number": order_number,
            "amount_cents": amount_cents,
            "method": method,
            "provider": provider,
            "phone": phone,
        }
        try:
            with self._client() as client:
                response = client.post("/payments", json=payload)
        except httpx.HTTPError as exc:
            logger.error("Payment provider unreachable on create", extra={"order_number": order_number})
            raise PaymentProviderUnavailable("Payment provider is unavailable") from exc

        if response.status_code >= 500:
            raise PaymentProviderUnavailable(
                "Payment provider is unavailable", {"status_code": response.status_code}
            )
        if response.status_code >= 400:
            # Declined at creation: report as a failed payment, not an outage
            return ProviderPayment(reference="", status="FAILED")
        return self._parse(response)

    def get_payment_status(self, reference: str) -> ProviderPayment:
        """Idempotent status read with retry and exponential backoff."""
        last_exc: Exception | None = None
        for attempt in range(self.verify_attempts):
            try:
                with self._client() as client:
                    response = client.get(f"/payments/{reference}")
                if response.status_code < 500:
                    if response.status_code == 404:
                        return ProviderPayment(reference=reference, status="PENDING")
                    if response.status_code >= 400:
                        # Our request was refused; retrying cannot help and it is not an outage
                        raise PaymentRequestRejected(
                            "Payment provider rejected the status request",
                            {"status_code": response.status_code},
                        )
                    return self._parse(response)
                last_exc = PaymentProviderUnavailable(
                    "Payment provider is unavailable", {"status_code": response.status_code}
                )
            except httpx.HTTPError as exc:
                last_exc = exc

            if attempt < self.verify_attempts - 1:
                logger.info(
                    "Retrying payment status read",
                    extra={"reference": reference, "attempt": attempt + 1},
                )
                time.sleep(self.verify_backoff * (2 ** attempt))

        if isinstance(last_exc, PaymentProviderUnavailable):
            raise last_exc
        raise PaymentProviderUnavailable("Payment provider is unavailable") from last_exc


def get_provider_client() -> PaymentProviderClient:
    """App-scoped client; tests install one with an httpx.MockTransport."""
    client = current_app.extensions.get("payment_provider")
    if client is None:
        cfg = current_app.config
        client = PaymentProviderClient(
            cfg["PAYMENT_PROVIDER_BASE_URL"],
            cfg.get("PAYMENT_PROVIDER_SECRET", ""),
            timeout=cfg.get("PAYMENT_PROVIDER_TIMEOUT", 15.0),
            verify_attempts=cfg.get("PAYMENT_VERIFY_ATTEMPTS", 3),
            verify_backoff=cfg.get("PAYMENT_VERIFY_BACKOFF", 0.5),
        )
        current_app.extensions["payment_provider"] = client
    return client
