from __future__ import annotations

from datetime import datetime, timedelta
from typing import AbstractSet, Optional

from ratewatch.utils.types import Notification


def should_notify(
    current_triggered: AbstractSet[str],
    last_notification: Optional[Notification],
    now: datetime,
    suppression_window: timedelta,
) -> bool:
    """
    Decide whether a triggered rate warrants a new notification.

      - no prior notification for the rate        -> notify
      - none of the current rules fired last time -> notify (new information)
      - same rule(s) still firing                 -> notify only once the last
        notification is strictly older than the suppression window
    """
    if last_notification is None:
        return True

    overlap = set(current_triggered) & set(last_notification.triggered_rule_ids)
    if not overlap:
        return True

    return (now - last_notification.created_at) > suppression_window


class NotificationGuard:
    """Holds the configured suppression window for repeated calls."""

    def __init__(self, suppression_window: timedelta):
        if suppression_window < timedelta(0):
            raise ValueError("suppression_window must be non-negative")
        self.suppression_window = suppression_window

    def should_notify(
        self,
        current_triggered: AbstractSet[str],
        last_notification: Optional[Notification],
        now: datetime,
    ) -> bool:
        return should_notify(current_triggered, last_notification, now, self.suppression_window)
