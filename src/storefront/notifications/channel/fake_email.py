"""In-memory email channel for development and tests."""

from dataclasses import dataclass, field
from uuid import uuid4

from storefront.errors import EmailRejected
from storefront.notifications.channel.email_port import EmailPort, EmailReceipt


@dataclass(frozen=True)
class SentEmail:
    message_id: str
    to_address: str
    template_name: str
    data: dict = field(default_factory=dict)


class FakeEmailAdapter(EmailPort):
    """Keeps every accepted message in ``sent``; can be told to refuse instead."""

    def __init__(self):
        self.sent: list[SentEmail] = []
        self.refusal: str | None = None

    def refuse(self, reason: str = "Mailbox unavailable") -> None:
        self.refusal = reason

    def accept(self) -> None:
        self.refusal = None

    def send(self, to_address: str, template_name: str, data: dict) -> EmailReceipt:
        if self.refusal is not None:
            raise EmailRejected(to_address, template_name, self.refusal)

        message = SentEmail(
            message_id=f"email-{uuid4().hex[:12]}",
            to_address=to_address,
            template_name=template_name,
            data=dict(data),
        )
        self.sent.append(message)
        return EmailReceipt(message_id=message.message_id, to_address=to_address, template_name=template_name)

    def templates_sent(self, to_address: str | None = None) -> list[str]:
        return [m.template_name for m in self.sent if to_address is None or m.to_address == to_address]

    def reset(self) -> None:
        self.sent.clear()
        self.refusal = None
