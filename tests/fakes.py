"""In-memory adapters swapped in for external services during tests."""
from typing import Optional
from uuid import uuid4

from notifications import EmailSender


class FakeEmailSender(EmailSender):
    """Records messages instead of delivering them."""

    def __init__(self):
        self.sent_emails: list = []
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Email delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> dict:
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}
        message_id = f"email-{uuid4().hex[:12]}"
        self.sent_emails.append({
            "message_id": message_id,
            "to": to,
            "subject": subject,
            "body": body,
            "html_body": html_body,
        })
        return {"message_id": message_id, "status": "sent"}
