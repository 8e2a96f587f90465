from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, List, Optional

from cryptotrack.utils.time import utcnow

logger = logging.getLogger("cryptotrack.alerts")


@dataclass(frozen=True)
class Alert:
    title: str
    message: str
    created_at: datetime = field(default_factory=utcnow)


class AlertFeed:
    """User-facing alerts waiting for whatever front end is attached."""

    def __init__(self, max_alerts: int = 20) -> None:
        self._alerts: Deque[Alert] = deque(maxlen=max_alerts)

    def show_alert(self, message: str, title: str = "Warning") -> Alert:
        alert = Alert(title=title, message=message)
        self._alerts.append(alert)
        logger.warning("alert | %s | %s", title, message)
        return alert

    def latest(self) -> Optional[Alert]:
        return self._alerts[-1] if self._alerts else None

    def list(self) -> List[Alert]:
        return list(self._alerts)

    def clear(self) -> None:
        self._alerts.clear()
