"""
Vendor event filters for webhook-triggered workflows.

A workflow whose trigger node names a vendor app and a logical trigger id
(``paypal`` / ``payment_completed``) only fires for deliveries whose concrete
event type is one of the ids mapped below. Unknown apps or trigger ids accept
every delivery.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Tuple


def _body_field(name: str, *, upper: bool = False) -> Callable[[Mapping[str, str], Any], str]:
    def read(_: Mapping[str, str], body: Any) -> str:
        value = body.get(name) if isinstance(body, dict) else None
        text = str(value or "")
        return text.upper() if upper else text.lower()

    return read


def _header(name: str) -> Callable[[Mapping[str, str], Any], str]:
    def read(headers: Mapping[str, str], _: Any) -> str:
        return str(headers.get(name) or "").lower()

    return read


@dataclass(frozen=True, slots=True)
class EventFilter:
    event_type: Callable[[Mapping[str, str], Any], str]
    events: Dict[str, Tuple[str, ...]]

    def matches(self, trigger_id: str, headers: Mapping[str, str], body: Any) -> bool:
        allowed = self.events.get(trigger_id)
        if not allowed:
            return True
        return self.event_type(headers, body) in allowed


EVENT_FILTERS: Dict[str, EventFilter] = {
    "paypal": EventFilter(
        event_type=_body_field("event_type", upper=True),
        events={
            "payment_completed": (
                "PAYMENT.CAPTURE.COMPLETED",
                "CHECKOUT.ORDER.APPROVED",
                "CHECKOUT.ORDER.COMPLETED",
            ),
            "payment_refunded": ("PAYMENT.CAPTURE.REFUNDED", "PAYMENT.SALE.REFUNDED"),
            "subscription_activated": ("BILLING.SUBSCRIPTION.ACTIVATED",),
            "subscription_cancelled": ("BILLING.SUBSCRIPTION.CANCELLED",),
        },
    ),
    "zoom": EventFilter(
        event_type=_body_field("event"),
        events={
            "meeting_started": ("meeting.started",),
            "meeting_ended": ("meeting.ended",),
            "participant_joined": ("meeting.participant_joined",),
            "recording_completed": ("recording.completed",),
            "webinar_registered": ("webinar.registration_created",),
        },
    ),
    "woocommerce": EventFilter(
        event_type=_header("x-wc-webhook-topic"),
        events={
            "order_created": ("order.created",),
            "order_updated": ("order.updated",),
            "customer_created": ("customer.created",),
            "product_created": ("product.created",),
        },
    ),
    "stripe": EventFilter(
        event_type=_body_field("type"),
        events={
            "payment_succeeded": ("payment_intent.succeeded", "charge.succeeded"),
            "payment_failed": ("payment_intent.payment_failed", "charge.failed"),
            "subscription_created": ("customer.subscription.created",),
            "subscription_cancelled": ("customer.subscription.deleted",),
            "invoice_paid": ("invoice.paid",),
        },
    ),
}


def matches_webhook_event(app_id: str, trigger_id: str, headers: Mapping[str, str], body: Any) -> bool:
    """True when the delivery matches the trigger's configured event (or no filter applies)."""
    if not app_id or not trigger_id:
        return True
    event_filter = EVENT_FILTERS.get(app_id)
    if event_filter is None:
        return True
    return event_filter.matches(trigger_id, headers, body)


__all__ = ["EVENT_FILTERS", "EventFilter", "matches_webhook_event"]
