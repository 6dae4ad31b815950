"""Reconciliation engine registry.

One engine per process: its correlation locks, confirmation markers and
voucher timestamps only work when every request shares them.
"""

from reconciliation.webhook.engine import ReconciliationEngine

_current_engine: ReconciliationEngine | None = None


def get_engine() -> ReconciliationEngine:
    """Return the process-wide engine, built from environment settings on first use."""
    global _current_engine
    if _current_engine is None:
        _current_engine = ReconciliationEngine()
    return _current_engine


def set_engine(engine: ReconciliationEngine) -> None:
    """Override the active engine (useful for tests)."""
    global _current_engine
    _current_engine = engine


def reset_engine() -> None:
    global _current_engine
    _current_engine = None
