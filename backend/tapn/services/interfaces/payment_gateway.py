"""
Payment gateway interface.
Stripe in production; tests use a recording fake.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

INTENT_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class GatewayPaymentIntent:
    id: str
    status: str
    amount: int
    client_secret: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == INTENT_SUCCEEDED


class PaymentGateway(ABC):
    """
    All methods raise UpstreamTimeout when the provider does not answer in
    time and a BookingError subclass for any other provider failure.
    """

    @abstractmethod
    async def find_or_create_customer(self, email: str, user_id: Optional[str] = None) -> str:
        """Return the provider customer id for `email`, creating it if needed."""
        pass

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        customer_id: str,
        metadata: dict[str, str],
    ) -> GatewayPaymentIntent:
        pass

    @abstractmethod
    async def retrieve_intent(self, payment_intent_id: str) -> GatewayPaymentIntent:
        pass

    @abstractmethod
    async def refund(self, payment_intent_id: str) -> str:
        """Refund the full captured amount. Returns the refund id."""
        pass
