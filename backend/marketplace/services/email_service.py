# Overview: Outbound customer email (invoices, order confirmations) behind an injectable sender.

"""
The sender is a collaborator constructed in create_app() and stored in
app.extensions["email_sender"]. Anything with a send(EmailMessage) method
works; tests install a recording sender.

Delivery is fire-and-forget: deliver() logs failures and returns False, it
never raises into the order flow that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..money import money_str


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    sender: str | None = None
    tags: dict = field(default_factory=dict)


class LoggingEmailSender:
    """Default sender: writes the message to the application log."""

    def __init__(self, logger=None):
        self._logger = logger

    def send(self, message: EmailMessage) -> None:
        logger = self._logger or current_app.logger
        logger.info("Email to %s: %s", message.to, message.subject)


def get_email_sender():
    return current_app.extensions["email_sender"]


def deliver(message: EmailMessage) -> bool:
    """Send through the configured sender. Returns False instead of raising."""
    if message.sender is None:
        message.sender = current_app.config.get("MAIL_FROM")
    try:
        get_email_sender().send(message)
    except Exception:
        current_app.logger.exception("Failed to send email to %s (%s)", message.to, message.subject)
        return False
    return True


def _customer_name(doc) -> str:
    if doc.customer_first_name and doc.customer_last_name:
        return f"{doc.customer_first_name} {doc.customer_last_name}"
    return doc.customer_email or "Customer"


def _item_lines(items) -> list[str]:
    return [
        f"  {item.quantity} x {item.title} @ {money_str(item.unit_price)} = {money_str(item.line_total)}"
        for item in items
    ]


def invoice_message(draft, *, to: str, payment_url: str, custom_message: str | None = None) -> EmailMessage:
    lines = [f"Hello {_customer_name(draft)},", ""]
    if custom_message:
        lines += [custom_message, ""]
    lines += _item_lines(draft.items)
    lines += [
        "",
        f"Subtotal: {money_str(draft.subtotal_amount)} {draft.currency}",
        f"Total: {money_str(draft.total_amount)} {draft.currency}",
        "",
        f"Pay online: {payment_url}",
    ]
    return EmailMessage(
        to=to,
        subject=f"Invoice #{draft.draft_number} - Payment Required",
        body="\n".join(lines),
        tags={"kind": "invoice", "draft_id": draft.id},
    )


def order_confirmation_message(order) -> EmailMessage:
    lines = [f"Hello {_customer_name(order)},", "", "Thank you for your order.", ""]
    lines += _item_lines(order.items)
    lines += ["", f"Total: {money_str(order.total_amount)} {order.currency}"]
    return EmailMessage(
        to=order.customer_email,
        subject=f"Order #{order.order_number} confirmed",
        body="\n".join(lines),
        tags={"kind": "order_confirmation", "order_id": order.id},
    )
