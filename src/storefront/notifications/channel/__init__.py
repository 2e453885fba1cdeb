"""Email channel access.

Uses the fake adapter unless another adapter is installed with
``set_email_channel`` at startup.
"""

from storefront.notifications.channel.email_port import EmailPort

_email_channel: EmailPort | None = None


def get_email_channel() -> EmailPort:
    global _email_channel
    if _email_channel is None:
        from storefront.notifications.channel.fake_email import FakeEmailAdapter

        _email_channel = FakeEmailAdapter()
    return _email_channel


def set_email_channel(channel: EmailPort) -> None:
    global _email_channel
    _email_channel = channel


def reset_channels() -> None:
    global _email_channel
    _email_channel = None
