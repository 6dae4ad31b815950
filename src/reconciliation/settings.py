"""Runtime settings for the reconciliation engine.

Values come from environment variables so the same build runs unchanged in
development, test, and production. Protean's own configuration (providers,
event processing mode) lives in ``pyproject.toml`` under ``[tool.protean]``.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass


def _float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    return float(raw) if raw not in (None, "") else default


def _int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class EngineSettings:
    webhook_secret: str = ""
    stripe_api_key: str = ""
    gateway_timeout_seconds: float = 10.0

    event_max_attempts: int = 3
    event_retry_base_seconds: float = 1.0
    correlation_lock_wait_seconds: float = 1.0

    email_sender: str = "pedidos@everblack.mx"
    email_max_attempts: int = 3
    email_retry_base_seconds: float = 1.0
    voucher_rate_limit_seconds: float = 60.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        environ = os.environ if environ is None else environ
        return cls(
            webhook_secret=environ.get("STRIPE_WEBHOOK_SECRET", ""),
            stripe_api_key=environ.get("STRIPE_API_KEY", ""),
            gateway_timeout_seconds=_float(environ, "GATEWAY_TIMEOUT_SECONDS", 10.0),
            event_max_attempts=_int(environ, "EVENT_MAX_ATTEMPTS", 3),
            event_retry_base_seconds=_float(environ, "EVENT_RETRY_BASE_SECONDS", 1.0),
            correlation_lock_wait_seconds=_float(environ, "CORRELATION_LOCK_WAIT_SECONDS", 1.0),
            email_sender=environ.get("EMAIL_SENDER", "pedidos@everblack.mx"),
            email_max_attempts=_int(environ, "EMAIL_MAX_ATTEMPTS", 3),
            email_retry_base_seconds=_float(environ, "EMAIL_RETRY_BASE_SECONDS", 1.0),
            voucher_rate_limit_seconds=_float(environ, "VOUCHER_RATE_LIMIT_SECONDS", 60.0),
        )
