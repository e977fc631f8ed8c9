# Overview: Post-commit notifications for vale and stock events (invoice issuer, notification bus).

"""
Signals are sent only AFTER the database transaction committed.

Receivers are best effort: a failing receiver is logged and skipped, it never
fails (or rolls back) the operation that sent the signal. Flask's own signals
use the same blinker library.
"""

from __future__ import annotations

from blinker import Namespace
from flask import current_app

_signals = Namespace()

voucher_created = _signals.signal("voucher-created")
voucher_cancelled = _signals.signal("voucher-cancelled")
sale_completed = _signals.signal("sale-completed")
stock_adjusted = _signals.signal("stock-adjusted")


def emit(signal, sender=None, **payload) -> int:
    """
    Deliver signal to every receiver, isolating receiver failures.

    Returns the number of receivers that raised.
    """
    failures = 0
    for receiver in list(signal.receivers_for(sender)):
        try:
            receiver(sender, **payload)
        except Exception:
            failures += 1
            current_app.logger.exception("Signal receiver failed: signal=%s receiver=%r", signal.name, receiver)
    return failures
