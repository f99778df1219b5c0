"""
Order e-mails.

``EmailSender`` is the port the order flow talks to. ``SMTPEmailSender``
delivers through any SMTP relay configured in the environment.
"""
import os
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

STORE_NAME = os.getenv("STORE_NAME", "Storefront")
EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", 587))
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
EMAIL_FROM = os.getenv("EMAIL_FROM") or EMAIL_USER
EMAIL_TIMEOUT = float(os.getenv("EMAIL_TIMEOUT", 10))


class EmailSender(ABC):
    """Abstract interface for email dispatch adapters."""

    @abstractmethod
    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> dict:
        """Send an email message.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...


class SMTPEmailSender(EmailSender):
    def __init__(self, host: str, port: int, username: Optional[str], password: Optional[str],
                 from_address: Optional[str], timeout: float = 10):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address or username
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> dict:
        if not (self.username and self.password):
            return {"message_id": None, "status": "failed", "error": "Email credentials not configured"}

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = f'"{STORE_NAME}" <{self.from_address}>'
        message["To"] = to
        message["Message-ID"] = make_msgid()
        message.set_content(body)
        if html_body:
            message.add_alternative(html_body, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(self.username, self.password)
                smtp.send_message(message)
        except OSError as exc:
            # smtplib.SMTPException is an OSError
            return {"message_id": None, "status": "failed", "error": str(exc)}
        return {"message_id": message["Message-ID"], "status": "sent"}


default_sender = SMTPEmailSender(EMAIL_HOST, EMAIL_PORT, EMAIL_USER, EMAIL_PASS, EMAIL_FROM, EMAIL_TIMEOUT)


def get_notifier() -> EmailSender:
    return default_sender


def order_number(order: dict) -> str:
    return str(order["_id"])[-8:].upper()


def _variant_text(item: dict) -> str:
    parts = []
    if item.get("selected_size"):
        parts.append(f"Size: {item['selected_size']}")
    if item.get("selected_color"):
        parts.append(f"Color: {item['selected_color']}")
    return f" ({', '.join(parts)})" if parts else ""


def render_order_confirmation(name: str, order: dict) -> dict:
    number = order_number(order)
    address = order.get("shipping_address") or {}
    lines = [
        f"{item['quantity']} x {item['name']}{_variant_text(item)} - {item['price'] * item['quantity']:.2f}"
        for item in order["items"]
    ]
    body = (
        f"Hello {name},\n\n"
        f"Thank you for your order #{number}. We have received it and will let you know when it ships.\n\n"
        + "\n".join(lines)
        + "\n\n"
        f"Items: {order.get('items_price', 0):.2f}\n"
        f"Tax: {order.get('tax_price', 0):.2f}\n"
        f"Shipping: {order.get('shipping_price', 0):.2f}\n"
        f"Total: {order.get('total_price', 0):.2f}\n"
        f"Payment method: {order.get('payment_method')}\n\n"
        f"Shipping to: {address.get('full_name')}, {address.get('address')}, "
        f"{address.get('city')}, {address.get('country')}\n"
    )
    rows = "".join(
        f"<tr><td>{escape(item['name'])}{escape(_variant_text(item))}</td>"
        f"<td>{item['quantity']}</td><td>{item['price'] * item['quantity']:.2f}</td></tr>"
        for item in order["items"]
    )
    html_body = (
        f"<h2>{escape(STORE_NAME)}</h2>"
        f"<p>Hello {escape(name or '')},</p>"
        f"<p>Thank you for your order <strong>#{number}</strong>.</p>"
        f"<table><tr><th>Item</th><th>Qty</th><th>Price</th></tr>{rows}</table>"
        f"<p>Total: <strong>{order.get('total_price', 0):.2f}</strong></p>"
    )
    return {
        "subject": f"Order Confirmation #{number} - {STORE_NAME}",
        "body": body,
        "html_body": html_body,
    }


def send_order_confirmation(sender: EmailSender, email: Optional[str], name: str, order: dict) -> dict:
    if not email:
        return {"success": False, "error": "No recipient address"}
    message = render_order_confirmation(name, order)
    result = sender.send(email, message["subject"], message["body"], message["html_body"])
    if result.get("status") == "sent":
        return {"success": True, "message_id": result.get("message_id")}
    return {"success": False, "error": result.get("error")}


def notify_order_confirmation(sender: EmailSender, email: Optional[str], name: str, order: dict) -> dict:
    """Send the confirmation and log the outcome. Never raises on delivery failure."""
    result = send_order_confirmation(sender, email, name, order)
    if result["success"]:
        logger.info("order confirmation sent", order_id=str(order["_id"]), message_id=result.get("message_id"))
    else:
        logger.error("order confirmation failed", order_id=str(order["_id"]), error=result.get("error"))
    return result
