"""
Customer Messaging Interface

Every message CrustOps sends goes through one of two channels: SMS
(login codes, status updates, confirmations) or email (confirmations,
when the customer left an address). Providers implement the two
channels; composing an order confirmation is shared.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Optional

from crustops.core.config import get_settings


@dataclass
class NotificationResult:
    """Outcome of one delivery attempt."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OrderConfirmation:
    """Everything a confirmation message needs about an order."""
    order_id: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    pizza_name: str
    quantity: int
    order_type: str
    date: str
    time_slot: str

    @property
    def short_id(self) -> str:
        return self.order_id[:8]

    @property
    def handoff(self) -> str:
        return "Pickup" if self.order_type == "pickup" else "Delivery"


def render_confirmation_text(confirmation: OrderConfirmation, brand: str) -> str:
    """Plain-text confirmation, used for the SMS and the email text part."""
    return (
        f"Hi {confirmation.customer_name}! Your order #{confirmation.short_id} is confirmed.\n"
        f"{confirmation.quantity} x {confirmation.pizza_name}\n"
        f"{confirmation.handoff}: {confirmation.date} at {confirmation.time_slot}\n"
        f"- {brand}"
    )


def render_confirmation_html(confirmation: OrderConfirmation, brand: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #c0392b;">Order Confirmed! 🍕</h1>
        <p>Hi {confirmation.customer_name},</p>
        <p>Your order <strong>#{confirmation.short_id}</strong> is confirmed.</p>
        <div style="background: #f8f9fa; padding: 15px; border-radius: 8px; margin: 20px 0;">
            <p><strong>{confirmation.quantity} x {confirmation.pizza_name}</strong></p>
            <p>{confirmation.handoff}: {confirmation.date} at {confirmation.time_slot}</p>
        </div>
        <p>- {brand}</p>
    </div>
    """


class BaseNotificationService(ABC):
    """SMS and email channels for one provider."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """True when both channels can deliver."""
        pass

    async def send_order_confirmation(self, confirmation: OrderConfirmation) -> NotificationResult:
        """
        Text the confirmation and, when an address is known, email it too.

        Succeeds if either channel delivered.
        """
        settings = get_settings()
        text = render_confirmation_text(confirmation, settings.brand_signature)

        sms_result = await self.send_sms(confirmation.customer_phone, text)

        email_result = None
        if confirmation.customer_email:
            email_result = await self.send_email(
                to_email=confirmation.customer_email,
                subject=f"Order #{confirmation.short_id} confirmed - {settings.app_name}",
                body_html=render_confirmation_html(confirmation, settings.brand_signature),
                body_text=text,
            )

        delivered = sms_result.success or bool(email_result and email_result.success)
        return NotificationResult(
            success=delivered,
            message_id=sms_result.message_id or (email_result.message_id if email_result else None),
            error_message=None if delivered else sms_result.error_message,
            provider=self.provider_name,
        )
