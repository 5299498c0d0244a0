"""
Order Status Flow

The kitchen moves an order along pending/confirmed -> cooking -> ready ->
delivered -> completed, and may cancel it at any point before completion.
The API accepts any allow-listed status; the helpers here only drive the
dashboard's suggested next action and the customer SMS for each status.
"""

from typing import Optional, Union

from crustops.models import OrderStatus

ALLOWED_STATUSES = [status.value for status in OrderStatus]

NEXT_STATUS = {
    OrderStatus.PENDING: OrderStatus.COOKING,
    OrderStatus.CONFIRMED: OrderStatus.COOKING,
    OrderStatus.COOKING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.DELIVERED,
    OrderStatus.DELIVERED: OrderStatus.COMPLETED,
}

NEXT_STATUS_LABELS = {
    OrderStatus.COOKING: "Start Cooking",
    OrderStatus.READY: "Mark Ready",
    OrderStatus.DELIVERED: "Mark Delivered",
    OrderStatus.COMPLETED: "Complete",
}


def _coerce(status: Union[OrderStatus, str]) -> OrderStatus:
    return status if isinstance(status, OrderStatus) else OrderStatus(status)


def is_valid_status(value: Optional[str]) -> bool:
    return value in ALLOWED_STATUSES


def next_status(status: Union[OrderStatus, str]) -> Optional[OrderStatus]:
    """Suggested next status, or None once an order is completed or cancelled."""
    return NEXT_STATUS.get(_coerce(status))


def next_action(status: Union[OrderStatus, str]) -> Optional[str]:
    """Dashboard button text for advancing the order."""
    suggested = next_status(status)
    return NEXT_STATUS_LABELS[suggested] if suggested else None


def can_cancel(status: Union[OrderStatus, str]) -> bool:
    return _coerce(status) not in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


def status_message(status: Union[OrderStatus, str], signature: str) -> Optional[str]:
    """Customer SMS for a status change. None means no message is sent."""
    status = _coerce(status)

    if status == OrderStatus.COOKING:
        return "Your order is in the oven."
    if status == OrderStatus.READY:
        return "Your order is ready!"
    if status == OrderStatus.DELIVERED:
        return f"Enjoy the pie! We await your honest review - {signature}"
    if status == OrderStatus.CANCELLED:
        return "Your order has been cancelled. If you have questions, please contact us."
    return None
