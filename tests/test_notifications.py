"""Tests for order confirmation e-mails."""

from bson import ObjectId

import notifications
from fakes import FakeEmailSender
from notifications import SMTPEmailSender


def _order():
    return {
        "_id": ObjectId("64b7f0c2a1b2c3d4e5f6a7b8"),
        "items": [
            {"name": "Bangle-B", "price": 480.0, "quantity": 2, "selected_size": "S", "selected_color": None},
            {"name": "Pearl <Drops>", "price": 320.0, "quantity": 1, "selected_size": None,
             "selected_color": "Gold"},
        ],
        "shipping_address": {"full_name": "Nadia Rahman", "address": "House 12", "city": "Dhaka",
                             "country": "Bangladesh"},
        "payment_method": "cash_on_delivery",
        "items_price": 1280.0,
        "shipping_price": 60.0,
        "total_price": 1340.0,
    }


def test_order_number_is_last_eight_characters():
    assert notifications.order_number(_order()) == "E5F6A7B8"


def test_render_confirmation():
    message = notifications.render_order_confirmation("Nadia", _order())

    assert message["subject"] == f"Order Confirmation #E5F6A7B8 - {notifications.STORE_NAME}"
    assert "2 x Bangle-B (Size: S) - 960.00" in message["body"]
    assert "1 x Pearl <Drops> (Color: Gold) - 320.00" in message["body"]
    assert "Total: 1340.00" in message["body"]
    assert "Pearl &lt;Drops&gt;" in message["html_body"]


def test_send_confirmation():
    sender = FakeEmailSender()
    result = notifications.send_order_confirmation(sender, "nadia@example.com", "Nadia", _order())
    assert result["success"] is True
    assert result["message_id"] == sender.sent_emails[0]["message_id"]


def test_send_without_recipient():
    sender = FakeEmailSender()
    result = notifications.send_order_confirmation(sender, None, "Nadia", _order())
    assert result == {"success": False, "error": "No recipient address"}
    assert sender.sent_emails == []


def test_delivery_failure_is_reported_not_raised():
    sender = FakeEmailSender()
    sender.configure(should_succeed=False, failure_reason="relay down")
    result = notifications.notify_order_confirmation(sender, "nadia@example.com", "Nadia", _order())
    assert result == {"success": False, "error": "relay down"}


def test_smtp_sender_without_credentials():
    sender = SMTPEmailSender("smtp.example.com", 587, None, None, None)
    result = sender.send("nadia@example.com", "Hello", "Body")
    assert result["status"] == "failed"
    assert result["error"] == "Email credentials not configured"


def test_smtp_sender_connection_error(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(notifications.smtplib, "SMTP", refuse)
    sender = SMTPEmailSender("smtp.example.com", 587, "shop@example.com", "app-password", None)
    result = sender.send("nadia@example.com", "Hello", "Body", "<p>Body</p>")
    assert result["status"] == "failed"
    assert "connection refused" in result["error"]
