"""PayMongo REST client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from app.api.errors import PaymentProviderError
from app.core.config import PaymentConfig

LOGGER = logging.getLogger(__name__)

PAYMENT_METHOD_TYPES = ["card", "gcash", "grab_pay", "paymaya"]


@dataclass(frozen=True)
class PaymentLink:
    link_id: str
    checkout_url: str


class PaymongoClient:
    """Creates hosted checkout sessions."""

    def __init__(
        self,
        config: PaymentConfig,
        *,
        session: requests.Session | None = None,
        timeout_sec: int = 15,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._session.auth = (config.secret_key, "")
        self._session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )
        self._timeout_sec = timeout_sec

    def close(self) -> None:
        self._session.close()

    def create_payment_link(
        self,
        *,
        amount: int,
        description: str,
        remarks: str,
        reference_number: str,
        success_url: str,
        cancel_url: str,
    ) -> PaymentLink:
        """Create a checkout session for ``amount`` centavos and return its URL."""
        if not self._config.secret_key:
            raise PaymentProviderError("Payment provider is not configured")
        payload: dict[str, Any] = {
            "data": {
                "attributes": {
                    "send_email_receipt": True,
                    "show_description": True,
                    "show_line_items": True,
                    "description": description,
                    "line_items": [
                        {
                            "name": description,
                            "description": remarks,
                            "amount": amount,
                            "currency": "PHP",
                            "quantity": 1,
                        }
                    ],
                    "payment_method_types": PAYMENT_METHOD_TYPES,
                    "reference_number": reference_number,
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "metadata": {"reference_number": reference_number, "remarks": remarks},
                }
            }
        }
        url = f"{self._config.api_base_url.rstrip('/')}/checkout_sessions"
        try:
            response = self._session.post(url, json=payload, timeout=self._timeout_sec)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning(
                "paymongo_checkout_failed error=%s",
                exc,
                extra={"reference_number": reference_number},
            )
            raise PaymentProviderError("Failed to create checkout session") from exc

        data = body.get("data") or {}
        checkout_url = str((data.get("attributes") or {}).get("checkout_url") or "")
        if not checkout_url:
            LOGGER.warning(
                "paymongo_checkout_missing_url", extra={"reference_number": reference_number}
            )
            raise PaymentProviderError("Failed to create checkout session")
        return PaymentLink(link_id=str(data.get("id") or ""), checkout_url=checkout_url)
