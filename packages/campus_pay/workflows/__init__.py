"""End-to-end payment workflows."""

from .payment_flow import (
    confirm_payment,
    monitor_for,
    record_payment_intent,
    track_confirmation,
)

__all__ = ["monitor_for", "record_payment_intent", "track_confirmation", "confirm_payment"]
