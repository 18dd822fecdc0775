"""External payment interface (app-to-user transfers)."""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

import requests

from tokensale_app.config import SaleConfig
from tokensale_app.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

_REFERENCE_KEYS = ("identifier", "txid", "transactionId")


@runtime_checkable
class PaymentGateway(Protocol):
    def send(self, address: str, amount: float, memo: str) -> str:
        """Transfer `amount` to `address`; return the external reference or raise PaymentGatewayError."""
        ...


class A2UPaymentClient:
    """
    HTTP client for the payment network's app-to-user endpoint.

    The timeout bounds every call; transport errors, non-2xx responses and
    replies without a reference all surface as PaymentGatewayError.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            logger.warning("Payment API key missing; transfers will be rejected by the network")
        self.api_url = api_url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Key {api_key or ''}",
            "Content-Type": "application/json",
        })

    @classmethod
    def from_config(cls, config: SaleConfig) -> "A2UPaymentClient":
        return cls(
            api_url=config.payment_api_url,
            api_key=config.payment_api_key,
            timeout=config.payment_timeout_seconds,
        )

    def send(self, address: str, amount: float, memo: str) -> str:
        payload = {
            "payment": {
                "amount": amount,
                "memo": memo,
                "uid": address,
                "metadata": {"sent_at": datetime.now(timezone.utc).isoformat()},
            }
        }
        try:
            response = self._session.post(self.api_url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PaymentGatewayError(f"Payment network unreachable: {exc}") from exc

        if not response.ok:
            raise PaymentGatewayError(self._error_message(response))

        try:
            data = response.json()
        except ValueError as exc:
            raise PaymentGatewayError("Payment network returned a non-JSON reply") from exc

        for key in _REFERENCE_KEYS:
            reference = data.get(key) if isinstance(data, dict) else None
            if reference:
                return str(reference)
        raise PaymentGatewayError("Payment network reply carried no transaction reference")

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP {response.status_code}: {response.text[:200]}"
