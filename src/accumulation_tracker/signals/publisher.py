"""Publishing of signal updates to Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from accumulation_tracker.storage.repos import SignalDTO

logger = logging.getLogger(__name__)

DEFAULT_SIGNAL_CHANNEL = "accumulation:signals"


def signal_to_dict(signal: SignalDTO) -> dict[str, object]:
    """Serialize a signal to a JSON-friendly dictionary."""
    return {
        "id": signal.id,
        "token_id": signal.token_id,
        "score": str(signal.score),
        "signal_type": signal.signal_type,
        "window_start": signal.window_start.isoformat(),
        "window_end": signal.window_end.isoformat(),
        "wallets_involved": list(signal.wallets_involved),
        "metadata": signal.metadata,
        "created_at": signal.created_at.isoformat() if signal.created_at else None,
    }


class SignalPublisher:
    """Pushes new and raised signals to a Redis channel.

    Publishing is best effort: failures are logged and never propagate to
    the caller that persisted the signal.
    """

    def __init__(self, redis: Redis | None, *, channel: str = DEFAULT_SIGNAL_CHANNEL) -> None:
        self._redis = redis
        self._channel = channel

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def publish(
        self, signal: SignalDTO, *, event: Literal["created", "updated"]
    ) -> bool:
        """Publish one signal event.

        Returns:
            True if the message was handed to Redis.
        """
        if self._redis is None:
            return False
        payload = {"event": event, "signal": signal_to_dict(signal)}
        try:
            await self._redis.publish(self._channel, json.dumps(payload))
        except Exception as e:
            logger.warning("Failed to publish signal %s to %s: %s", signal.id, self._channel, e)
            return False
        return True
