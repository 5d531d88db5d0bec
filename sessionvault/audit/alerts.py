"""Security alert emitter."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from redis.exceptions import RedisError

from sessionvault.valkey import SecurityAlertQueue

logger = logging.getLogger(__name__)

REFRESH_TOKEN_REUSE = "refresh_token.reuse_detected"


def _is_testing() -> bool:
    """Check if running in test environment."""
    return os.environ.get("TESTING") == "1"


@dataclass
class SecurityAlert:
    """A security-relevant event that should page monitoring."""

    alert_type: str
    data: dict[str, Any]
    alert_id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        """Convert to JSON-serializable payload."""
        return {
            "alert_id": str(self.alert_id),
            "alert_type": self.alert_type,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


class SecurityAlertEmitter:
    """Queues security alerts for async delivery."""

    @staticmethod
    async def emit(alert_type: str, data: dict[str, Any]) -> SecurityAlert | None:
        """
        Queue a security alert.

        Args:
            alert_type: The alert type (e.g., "refresh_token.reuse_detected")
            data: The alert payload

        Returns:
            The queued SecurityAlert, or None if skipped or the queue is down
        """
        if _is_testing():
            logger.debug("Skipping security alert in test environment")
            return None

        alert = SecurityAlert(alert_type=alert_type, data=data)

        try:
            await SecurityAlertQueue.push(alert.to_payload())
            logger.info("Queued security alert %s (type: %s)", alert.alert_id, alert_type)
        except (RedisError, OSError) as e:
            logger.error("Failed to queue security alert %s: %s", alert_type, e)
            return None

        return alert

    @staticmethod
    async def emit_reuse_detected(
        user_id: uuid.UUID,
        session_id: uuid.UUID,
        token_id: uuid.UUID,
    ) -> SecurityAlert | None:
        """Convenience method for refresh-token replay."""
        return await SecurityAlertEmitter.emit(
            REFRESH_TOKEN_REUSE,
            {
                "user_id": str(user_id),
                "session_id": str(session_id),
                "token_id": str(token_id),
            },
        )
