"""Table notifications for the event system."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of table notifications."""

    # Round flow
    ROUND_STARTED = auto()
    ROUND_SETTLED = auto()
    GAME_ENDED = auto()

    # Cards and shoe
    CARD_REVEALED = auto()
    SHOE_SHUFFLED = auto()
    SHUFFLE_PENDING = auto()
    SHOE_INTEGRITY_FAILED = auto()

    # Player actions
    PLAYER_HIT = auto()
    PLAYER_STAND = auto()
    PLAYER_DOUBLE = auto()
    PLAYER_SPLIT = auto()
    PLAYER_SURRENDER = auto()

    # Insurance
    INSURANCE_OFFERED = auto()
    INSURANCE_TAKEN = auto()
    INSURANCE_DECLINED = auto()
    INSURANCE_WINS = auto()
    INSURANCE_LOSES = auto()

    # Dealer
    DEALER_REVEALS = auto()
    DEALER_HITS = auto()
    DEALER_BLACKJACK = auto()

    # Outcomes
    PLAYER_BLACKJACK = auto()
    PLAYER_BUSTS = auto()

    # Bankroll
    INSUFFICIENT_FUNDS = auto()
    FUNDS_ADDED = auto()


@dataclass(frozen=True)
class GameEvent:
    """
    Immutable table notification.

    Events are the side channel between the engine and independent observers
    such as the running-count tap; they never feed back into round outcomes.
    """

    event_type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"{self.event_type.name}: {self.data}"


# Type alias for event handlers
EventHandler = Callable[[GameEvent], None]


class EventEmitter:
    """
    Simple event emitter for table events.

    Allows subscribing to specific event types or all events. A failing
    handler is logged and skipped; it never interrupts the emitter.
    """

    def __init__(self, history_limit: int = 500) -> None:
        """Initialize the event emitter."""
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._event_history: list[GameEvent] = []
        self._history_limit = history_limit

    def subscribe(
        self,
        handler: EventHandler,
        event_type: EventType | None = None,
    ) -> Callable[[], None]:
        """
        Subscribe to events.

        Args:
            handler: Function to call when event occurs
            event_type: Specific event type to subscribe to, or None for all events

        Returns:
            A callable that removes the subscription
        """
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler, event_type)

        return unsubscribe

    def unsubscribe(
        self,
        handler: EventHandler,
        event_type: EventType | None = None,
    ) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: GameEvent) -> None:
        """
        Emit an event to all subscribers.

        Args:
            event: The event to emit
        """
        self._event_history.append(event)
        if len(self._event_history) > self._history_limit:
            del self._event_history[: len(self._event_history) - self._history_limit]

        handlers = list(self._handlers.get(event.event_type, ()))
        handlers.extend(self._handlers.get(None, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type.name)

    def emit_new(
        self,
        event_type: EventType,
        **data: Any,
    ) -> GameEvent:
        """
        Create and emit a new event.

        Args:
            event_type: Type of event
            **data: Event data

        Returns:
            The created event
        """
        event = GameEvent(event_type=event_type, data=data)
        self.emit(event)
        return event

    @property
    def history(self) -> list[GameEvent]:
        """Return the event history."""
        return self._event_history.copy()

    def clear_history(self) -> None:
        """Clear the event history."""
        self._event_history.clear()
