"""
Swap Event Bus

Typed publish/subscribe for phase transitions. Every event carries an
independent snapshot of the request at the moment it was published.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from .models import FlowPhase, SwapRequest

logger = logging.getLogger(__name__)


class SwapEventType(str, Enum):
    PHASE_COMPLETED = "phaseCompleted"
    PHASE_ADVANCED = "phaseAdvanced"
    REQUEST_COMPLETED = "requestCompleted"
    REQUEST_FAILED = "requestFailed"
    REQUEST_RETRYING = "requestRetrying"
    FUNDS_RECOVERED = "fundsRecovered"
    FUND_RECOVERY_FAILED = "fundRecoveryFailed"


@dataclass(frozen=True)
class SwapEvent:
    """A phase-transition notification."""

    type: SwapEventType
    request: SwapRequest
    phase: Optional[FlowPhase] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "phase": self.phase.value if self.phase else None,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "request": self.request.to_dict(),
        }


SwapEventHandler = Callable[[SwapEvent], Awaitable[None]]


class EventBus:
    """Routes swap events to subscribers registered per event type."""

    def __init__(self) -> None:
        self._handlers: Dict[SwapEventType, List[SwapEventHandler]] = {}
        self._wildcard: List[SwapEventHandler] = []

    def subscribe(self, event_type: SwapEventType, handler: SwapEventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: SwapEventType, handler: SwapEventHandler) -> None:
        if event_type in self._handlers:
            self._handlers[event_type] = [h for h in self._handlers[event_type] if h != handler]

    def subscribe_all(self, handler: SwapEventHandler) -> None:
        """Receive every event kind."""
        self._wildcard.append(handler)

    def unsubscribe_all(self, handler: SwapEventHandler) -> None:
        self._wildcard = [h for h in self._wildcard if h != handler]

    async def publish(
        self,
        event_type: SwapEventType,
        request: SwapRequest,
        *,
        phase: Optional[FlowPhase] = None,
        error: Optional[str] = None,
    ) -> SwapEvent:
        event = SwapEvent(type=event_type, request=request.snapshot(), phase=phase, error=error)

        handlers = [*self._handlers.get(event_type, []), *self._wildcard]
        if not handlers:
            return event

        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "Event handler for %s failed: %s", event_type.value, result, exc_info=result
                )
        return event

    @asynccontextmanager
    async def listen(
        self,
        request_id: Optional[str] = None,
        max_buffered: int = 100,
    ) -> AsyncIterator["asyncio.Queue[SwapEvent]"]:
        """Buffer events (optionally for one request) into a queue while the context is open."""
        queue: asyncio.Queue[SwapEvent] = asyncio.Queue(maxsize=max_buffered)

        async def _enqueue(event: SwapEvent) -> None:
            if request_id is not None and event.request.id != request_id:
                return
            if queue.full():
                # Slow consumer; keep the newest events
                queue.get_nowait()
            queue.put_nowait(event)

        self.subscribe_all(_enqueue)
        try:
            yield queue
        finally:
            self.unsubscribe_all(_enqueue)
