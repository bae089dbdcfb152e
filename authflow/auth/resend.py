"""Resend cooldown helpers for the UI-owned resend timer."""

import math
from datetime import datetime, timezone

from authflow.auth.schemas import AuthSnapshot


def seconds_until_resend(
    snapshot: AuthSnapshot, cooldown_seconds: int, now: datetime | None = None
) -> int:
    """Whole seconds remaining until a new code may be requested.

    Returns 0 when no code has been sent yet or the cooldown has elapsed.
    """
    sent_at = snapshot.code_sent_at
    if sent_at is None:
        return 0
    now = now or datetime.now(timezone.utc)
    remaining = cooldown_seconds - (now - sent_at).total_seconds()
    return max(0, math.ceil(remaining))


def can_resend(
    snapshot: AuthSnapshot, cooldown_seconds: int, now: datetime | None = None
) -> bool:
    """Whether the UI should enable its resend control."""
    if snapshot.is_loading or snapshot.is_authenticated:
        return False
    if not snapshot.phone_number:
        return False
    return seconds_until_resend(snapshot, cooldown_seconds, now) == 0
