"""Payment API router: checkout creation, status and provider webhook."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from app.api.contracts import (
    ApiErrorResponse,
    CheckoutData,
    CheckoutResponse,
    CheckoutStatusData,
    CheckoutStatusResponse,
    MessageResponse,
)
from app.auth.gate import RequestGate
from app.auth.models import AccessClaims
from app.payments.service import PaymentService

SIGNATURE_HEADER = "paymongo-signature"


def create_payment_router(*, service: PaymentService, gate: RequestGate) -> APIRouter:
    """Build payment routes."""
    router = APIRouter(tags=["payments"])

    @router.post(
        "/api/payments/paymongo/create-checkout",
        response_model=CheckoutResponse,
        responses={401: {"model": ApiErrorResponse}, 502: {"model": ApiErrorResponse}},
    )
    def create_checkout(identity: AccessClaims = Depends(gate)) -> CheckoutResponse:
        checkout = service.create_checkout(identity.user_id)
        return CheckoutResponse(
            message="Checkout session created successfully",
            data=CheckoutData(
                checkout_url=checkout.checkout_url,
                reference_number=checkout.reference_number,
                success_url=checkout.success_url,
            ),
        )

    @router.get(
        "/api/payments/paymongo/status/{reference_number}",
        response_model=CheckoutStatusResponse,
        responses={401: {"model": ApiErrorResponse}, 404: {"model": ApiErrorResponse}},
    )
    def checkout_status(
        reference_number: str, identity: AccessClaims = Depends(gate)
    ) -> CheckoutStatusResponse:
        status = service.get_checkout_status(reference_number, identity.user_id)
        return CheckoutStatusResponse(
            message="Payment status retrieved successfully",
            data=CheckoutStatusData(**status),
        )

    @router.post("/api/webhooks/paymongo", response_model=MessageResponse)
    async def paymongo_webhook(request: Request) -> MessageResponse:
        """Acknowledge every delivery; the signature is checked over the raw bytes."""
        raw_body = await request.body()
        await run_in_threadpool(
            service.handle_webhook, raw_body, request.headers.get(SIGNATURE_HEADER, "")
        )
        return MessageResponse(message="Webhook received")

    return router
