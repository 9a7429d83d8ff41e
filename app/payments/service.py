"""Season pass checkout creation and PayMongo webhook processing."""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable, Protocol

from app.api.errors import NotFoundError
from app.auth.repository import AuthRepository
from app.core.config import PaymentConfig
from app.payments.client import PaymentLink
from app.payments.signature import verify_paymongo_signature

LOGGER = logging.getLogger(__name__)

PAID_EVENT_TYPES = frozenset(
    {"link.payment.paid", "payment.paid", "checkout_session.payment.paid"}
)
SEASON_PASS_DESCRIPTION = "ReviewGuro Season Pass"


class PaymentLinkProvider(Protocol):
    def create_payment_link(
        self,
        *,
        amount: int,
        description: str,
        remarks: str,
        reference_number: str,
        success_url: str,
        cancel_url: str,
    ) -> PaymentLink: ...


class WebhookOutcome(StrEnum):
    """What happened to one delivered webhook event."""

    REJECTED = "rejected"
    MALFORMED = "malformed"
    IGNORED = "ignored"
    UNRESOLVED = "unresolved"
    DUPLICATE = "duplicate"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass(frozen=True)
class Checkout:
    reference_number: str
    checkout_url: str
    success_url: str


@dataclass(frozen=True)
class PaidPayment:
    reference_number: str
    provider_payment_id: str
    amount: int
    payment_method: str


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_paid_payment(resource: dict[str, Any]) -> PaidPayment | None:
    """Pull the paid payment out of a link, checkout session or payment resource."""
    attributes = _as_dict(resource.get("attributes"))
    metadata = _as_dict(attributes.get("metadata"))
    reference_number = str(
        attributes.get("reference_number")
        or metadata.get("reference_number")
        or metadata.get("referenceNumber")
        or ""
    )

    payments = attributes.get("payments")
    if isinstance(payments, list) and payments:
        payment = next(
            (
                _as_dict(item)
                for item in payments
                if _as_dict(_as_dict(item).get("attributes")).get("status") == "paid"
            ),
            None,
        )
        if payment is None:
            return None
        payment_attributes = _as_dict(payment.get("attributes"))
        payment_id = str(payment.get("id") or "")
    else:
        if attributes.get("status") != "paid":
            return None
        payment_attributes = attributes
        payment_id = str(resource.get("id") or "")

    if not reference_number:
        reference_number = str(
            _as_dict(payment_attributes.get("metadata")).get("reference_number")
            or payment_attributes.get("external_reference_number")
            or ""
        )
    if not reference_number or not payment_id:
        return None
    method = str(
        payment_attributes.get("payment_method_used")
        or _as_dict(payment_attributes.get("source")).get("type")
        or "unknown"
    )
    return PaidPayment(
        reference_number=reference_number,
        provider_payment_id=payment_id,
        amount=int(payment_attributes.get("amount") or 0),
        payment_method=method,
    )


class PaymentService:
    """Creates checkouts and turns verified paid events into premium access."""

    def __init__(
        self,
        *,
        repo: AuthRepository,
        client: PaymentLinkProvider,
        config: PaymentConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._client = client
        self._config = config
        self._clock = clock

    def _new_reference_number(self) -> str:
        return f"RG-{int(self._clock())}-{secrets.token_hex(4).upper()}"

    def create_checkout(self, user_id: str) -> Checkout:
        """Store a pending checkout under a fresh reference number, then ask for a link."""
        if self._repo.get_user_by_id(user_id) is None:
            raise NotFoundError("User not found")
        reference_number = self._new_reference_number()
        amount = self._config.season_pass_price
        self._repo.create_checkout(
            reference_number=reference_number, user_id=user_id, amount=amount
        )
        separator = "&" if "?" in self._config.success_url else "?"
        success_url = f"{self._config.success_url}{separator}ref={reference_number}"
        link = self._client.create_payment_link(
            amount=amount,
            description=SEASON_PASS_DESCRIPTION,
            remarks=f"Season pass for {reference_number}",
            reference_number=reference_number,
            success_url=success_url,
            cancel_url=self._config.cancel_url,
        )
        self._repo.attach_checkout_link(
            reference_number, provider_link_id=link.link_id, checkout_url=link.checkout_url
        )
        LOGGER.info(
            "checkout_created",
            extra={"user_id": user_id, "reference_number": reference_number},
        )
        return Checkout(
            reference_number=reference_number,
            checkout_url=link.checkout_url,
            success_url=success_url,
        )

    def get_checkout_status(self, reference_number: str, user_id: str) -> dict[str, Any]:
        """Status of the caller's own checkout; other users' checkouts are not found."""
        checkout = self._repo.get_checkout(reference_number)
        if checkout is None or checkout["user_id"] != user_id:
            raise NotFoundError("Payment not found")
        user = self._repo.get_user_by_id(user_id)
        return {
            "reference_number": reference_number,
            "status": str(checkout["status"]),
            "is_premium": bool(user and user.is_premium),
        }

    def handle_webhook(self, raw_body: bytes, signature_header: str) -> WebhookOutcome:
        """Verify and apply one webhook delivery. Never raises."""
        try:
            outcome = self._handle_webhook(raw_body, signature_header)
        except Exception:
            LOGGER.exception("webhook_processing_failed")
            outcome = WebhookOutcome.FAILED
        LOGGER.info("webhook_handled", extra={"outcome": outcome.value})
        return outcome

    def _handle_webhook(self, raw_body: bytes, signature_header: str) -> WebhookOutcome:
        if not verify_paymongo_signature(
            raw_body,
            signature_header,
            self._config.webhook_secret,
            live=self._config.live_mode,
            now=self._clock(),
            tolerance_seconds=self._config.webhook_tolerance_seconds,
        ):
            LOGGER.warning("webhook_signature_invalid")
            return WebhookOutcome.REJECTED

        try:
            body = json.loads(raw_body)
        except ValueError:
            LOGGER.warning("webhook_payload_not_json")
            return WebhookOutcome.MALFORMED
        event = _as_dict(_as_dict(body).get("data"))
        event_attributes = _as_dict(event.get("attributes"))
        event_type = str(event_attributes.get("type") or event.get("type") or "")
        log_extra = {"event_id": str(event.get("id") or ""), "event_type": event_type}

        if event_type not in PAID_EVENT_TYPES:
            LOGGER.info("webhook_event_ignored", extra=log_extra)
            return WebhookOutcome.IGNORED

        payment = extract_paid_payment(_as_dict(event_attributes.get("data")))
        if payment is None:
            LOGGER.warning("webhook_payment_not_paid", extra=log_extra)
            return WebhookOutcome.IGNORED

        log_extra["reference_number"] = payment.reference_number
        checkout = self._repo.get_checkout(payment.reference_number)
        if checkout is None:
            LOGGER.warning("webhook_unknown_reference", extra=log_extra)
            return WebhookOutcome.UNRESOLVED
        if payment.amount < int(checkout["amount"]):
            LOGGER.warning(
                "webhook_amount_mismatch paid=%s expected=%s",
                payment.amount,
                checkout["amount"],
                extra=log_extra,
            )
            return WebhookOutcome.UNRESOLVED

        granted = self._repo.mark_checkout_paid_and_grant_premium(
            reference_number=payment.reference_number,
            provider_payment_id=payment.provider_payment_id,
            amount=payment.amount,
            payment_method=payment.payment_method,
        )
        if not granted:
            LOGGER.info("webhook_duplicate_payment", extra=log_extra)
            return WebhookOutcome.DUPLICATE
        LOGGER.info(
            "premium_granted", extra={**log_extra, "user_id": str(checkout["user_id"])}
        )
        return WebhookOutcome.PROCESSED
