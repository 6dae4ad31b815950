"""Email channel registry — pluggable transactional email transport.

Provides singleton access to the email adapter. The fake adapter is the
default; ``EMAIL_ADAPTER`` selects another transport in production.
"""

import os

from reconciliation.channel.email_port import EmailPort

_email_instance: EmailPort | None = None


def get_email_channel() -> EmailPort:
    """Return the configured email adapter (singleton)."""
    global _email_instance
    if _email_instance is None:
        adapter = os.environ.get("EMAIL_ADAPTER", "fake")
        if adapter == "fake":
            from reconciliation.channel.fake_email import FakeEmailAdapter

            _email_instance = FakeEmailAdapter()
        else:
            raise ValueError(f"Unknown email adapter: {adapter}")
    return _email_instance


def set_email_channel(adapter: EmailPort) -> None:
    """Override the active email adapter (useful for tests)."""
    global _email_instance
    _email_instance = adapter


def reset_email_channel() -> None:
    """Reset the email singleton (useful for testing)."""
    global _email_instance
    _email_instance = None
