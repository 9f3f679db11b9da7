"""
Knock-Out (KO) running count observer.

The counter is a side-channel tap on "a card became visible". It knows
nothing about hands, rounds or outcomes; it only sees reveal notifications
``{card_id, rank}`` and dedupes them by card identity.

Tag values:
    2-7: +1
    8-9: 0
    10-A: -1

Full deck sum: +4 (unbalanced), so the initial running count for N decks
is -4 * (N - 1).
"""

import logging
from typing import Callable, Mapping

from bjcore.cards import Rank
from bjcore.events import EventEmitter, EventType, GameEvent

logger = logging.getLogger(__name__)

KO_TAGS: Mapping[Rank, int] = {
    Rank.TWO: 1,
    Rank.THREE: 1,
    Rank.FOUR: 1,
    Rank.FIVE: 1,
    Rank.SIX: 1,
    Rank.SEVEN: 1,
    Rank.EIGHT: 0,
    Rank.NINE: 0,
    Rank.TEN: -1,
    Rank.JACK: -1,
    Rank.QUEEN: -1,
    Rank.KING: -1,
    Rank.ACE: -1,
}

CountListener = Callable[[int], None]


def normalize_rank(rank: object) -> Rank | None:
    """Accept Rank members or tokens like 'K', 'KING', 'T', '1'; None if unknown."""
    if isinstance(rank, Rank):
        return rank
    if rank is None:
        return None
    try:
        return Rank.from_string(str(rank))
    except ValueError:
        return None


def ko_tag(rank: object) -> int:
    """KO tag for a rank; unknown ranks count 0."""
    normalized = normalize_rank(rank)
    if normalized is None:
        return 0
    return KO_TAGS[normalized]


def initial_running_count(num_decks: object) -> int:
    """IRC that puts the KO key count at zero; 0 for a single deck."""
    try:
        decks = round(float(num_decks))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    if decks <= 1:
        return 0
    return -4 * (decks - 1)


class KOCounter:
    """Running count accumulator fed by card-reveal notifications."""

    def __init__(self, num_decks: int = 1) -> None:
        self._running_count = initial_running_count(num_decks)
        self._counted_ids: set[str] = set()
        self._listeners: list[CountListener] = []

    @property
    def running_count(self) -> int:
        """Return the current running count."""
        return self._running_count

    @property
    def cards_seen(self) -> int:
        """Number of distinct cards counted since the last reset."""
        return len(self._counted_ids)

    def reset(self, num_decks: int) -> int:
        """Start a new shoe: IRC for ``num_decks`` and an empty dedup set."""
        self._running_count = initial_running_count(num_decks)
        self._counted_ids.clear()
        logger.debug("KO count reset to %d for %s decks", self._running_count, num_decks)
        self._notify()
        return self._running_count

    def observe_reveal(self, card_id: str, rank: object) -> bool:
        """
        Count a revealed card once.

        Returns:
            True if the card changed the count state, False if it was a
            duplicate or malformed notification
        """
        if not card_id or rank is None:
            return False
        key = str(card_id)
        if key in self._counted_ids:
            return False
        self._counted_ids.add(key)
        self._running_count += ko_tag(rank)
        self._notify()
        return True

    def subscribe(self, listener: CountListener) -> Callable[[], None]:
        """Register for count-updated notifications; returns an unsubscribe handle."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def attach(self, emitter: EventEmitter) -> Callable[[], None]:
        """
        Wire the counter to a table's notifications.

        CARD_REVEALED feeds the count, SHOE_SHUFFLED resets it. Returns a
        handle that detaches both subscriptions.
        """

        def on_reveal(event: GameEvent) -> None:
            self.observe_reveal(event.data.get("card_id", ""), event.data.get("rank"))

        def on_shuffle(event: GameEvent) -> None:
            self.reset(event.data.get("num_decks", 1))

        detach_reveal = emitter.subscribe(on_reveal, EventType.CARD_REVEALED)
        detach_shuffle = emitter.subscribe(on_shuffle, EventType.SHOE_SHUFFLED)

        def detach() -> None:
            detach_reveal()
            detach_shuffle()

        return detach

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._running_count)
            except Exception:
                logger.exception("Count listener failed")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(running_count={self._running_count})"
