"""
Stripe implementation of the payment gateway.

stripe-python is synchronous; each call runs in a worker thread under the
upstream timeout so a slow Stripe response cannot stall the event loop
or hang a request.
"""

import asyncio
from typing import Any, Callable, Optional

import stripe

from tapn.core.config import get_settings
from tapn.core.exceptions import PaymentGatewayError, PaymentLookupFailed
from tapn.core.logging import get_logger
from tapn.core.timeouts import with_timeout
from tapn.services.interfaces.payment_gateway import GatewayPaymentIntent, PaymentGateway

logger = get_logger(__name__)


def _to_intent(intent: Any) -> GatewayPaymentIntent:
    metadata = intent.get("metadata") or {}
    return GatewayPaymentIntent(
        id=intent["id"],
        status=intent["status"],
        amount=int(intent["amount"]),
        client_secret=intent.get("client_secret"),
        metadata={str(k): str(v) for k, v in dict(metadata).items()},
    )


class StripeGateway(PaymentGateway):

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.currency = currency or settings.STRIPE_CURRENCY
        if not self.api_key:
            logger.warning("stripe_not_configured")

    async def _call(self, operation: str, fn: Callable[..., Any], **params) -> Any:
        return await with_timeout(
            asyncio.to_thread(fn, api_key=self.api_key, **params),
            operation=f"stripe {operation}",
        )

    async def find_or_create_customer(self, email: str, user_id: Optional[str] = None) -> str:
        try:
            customers = await self._call("customer lookup", stripe.Customer.list, email=email, limit=1)
            if customers.data:
                customer_id = customers.data[0].id
                logger.info("stripe_customer_found", customer_id=customer_id)
                return customer_id

            metadata = {"user_id": user_id} if user_id else {}
            customer = await self._call(
                "customer create", stripe.Customer.create, email=email, metadata=metadata
            )
        except stripe.StripeError as e:
            logger.error("stripe_customer_failed", error=str(e))
            raise PaymentGatewayError("Failed to set up payment customer") from e

        logger.info("stripe_customer_created", customer_id=customer.id)
        return customer.id

    async def create_intent(
        self,
        amount: int,
        customer_id: str,
        metadata: dict[str, str],
    ) -> GatewayPaymentIntent:
        try:
            intent = await self._call(
                "payment intent create",
                stripe.PaymentIntent.create,
                amount=amount,
                currency=self.currency,
                customer=customer_id,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error("stripe_intent_create_failed", error=str(e))
            raise PaymentGatewayError("Failed to create payment") from e
        return _to_intent(intent)

    async def retrieve_intent(self, payment_intent_id: str) -> GatewayPaymentIntent:
        try:
            intent = await self._call(
                "payment intent retrieve", stripe.PaymentIntent.retrieve, id=payment_intent_id
            )
        except stripe.StripeError as e:
            logger.error("stripe_intent_retrieve_failed", payment_intent_id=payment_intent_id, error=str(e))
            raise PaymentLookupFailed() from e
        return _to_intent(intent)

    async def refund(self, payment_intent_id: str) -> str:
        try:
            refund = await self._call(
                "refund create", stripe.Refund.create, payment_intent=payment_intent_id
            )
        except stripe.StripeError as e:
            logger.error("stripe_refund_failed", payment_intent_id=payment_intent_id, error=str(e))
            raise PaymentGatewayError("Refund failed") from e
        logger.info("stripe_refund_created", refund_id=refund.id, amount=refund.amount)
        return refund.id
