"""Transactional email port.

Order confirmations, status changes and checkout reminders go out through
an ``EmailPort``. Sending is always best-effort from the caller's side: an
adapter either returns an ``EmailReceipt`` or raises ``EmailRejected``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class EmailReceipt:
    """The mail provider's acknowledgement of an accepted message."""

    message_id: str
    to_address: str
    template_name: str


class EmailPort(ABC):
    @abstractmethod
    def send(self, to_address: str, template_name: str, data: dict) -> EmailReceipt:
        """Queue ``template_name`` rendered with ``data`` for ``to_address``.

        Raises ``EmailRejected`` when the provider refuses the message.
        """
        ...
