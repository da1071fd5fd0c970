"""Payment sender — protocol plus an HTTP client for a wallet service.

The sender fails fast: it never retries. Retrying a failed disbursement is
the resolver's job (see ``MarketResolver.resume``).
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from parimutuel_core.config.schema import PaymentsConfig
from parimutuel_core.wagering.errors import PaymentSendError

log = structlog.get_logger("payment_sender")


class PaymentSender(Protocol):
    def send(self, address: str, amount: int, memo: str | None = None) -> str:
        """Send *amount* to *address*; return the payment reference."""
        ...


class HttpPaymentSender:
    """Synchronous client for a wallet service exposing ``POST /payments``.

    Request body: ``{"address": ..., "amount": ..., "memo": ...}``.
    Response body: ``{"reference": "<txid>"}``. The memo is stable per bet so
    the wallet service can deduplicate a resend.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        api_key: str = "",
        timeout_s: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: PaymentsConfig) -> "HttpPaymentSender":
        return cls(base_url=config.base_url, api_key=config.api_key, timeout_s=config.timeout_s)

    def close(self) -> None:
        self._http.close()

    def send(self, address: str, amount: int, memo: str | None = None) -> str:
        if amount <= 0:
            raise PaymentSendError(f"refusing to send non-positive amount {amount}")
        try:
            resp = self._http.post(
                "/payments",
                json={"address": address, "amount": amount, "memo": memo},
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("payment_send_failed", address=address, amount=amount, memo=memo, error=str(exc))
            raise PaymentSendError(f"payment of {amount} to {address} failed: {exc}") from exc

        reference = body.get("reference") if isinstance(body, dict) else None
        if not reference:
            raise PaymentSendError("wallet service returned no payment reference")
        log.info("payment_sent", address=address, amount=amount, reference=reference)
        return str(reference)
