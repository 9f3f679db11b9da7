"""
Blackjack rule helpers and table rule configuration.

The hand functions are total: they accept any iterable of cards (or None)
and return 0/False for empty or malformed input instead of raising.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, NamedTuple

from bjcore.cards import Card


class HandTotal(NamedTuple):
    """Best total for a hand plus whether an ace is still counted as 11."""

    total: int
    soft: bool


def card_value(card: Card | None) -> int:
    """Return the blackjack value of a card (A=11, ten-group=10)."""
    if card is None:
        return 0
    try:
        return card.rank.blackjack_value
    except AttributeError:
        return 0


def is_ten_group(card: Card | None) -> bool:
    """True if the card is a 10, J, Q or K."""
    if card is None:
        return False
    return bool(getattr(card, "is_ten_group", False))


def _raw_total(cards: Iterable[Card] | None) -> tuple[int, int]:
    total = 0
    aces = 0
    for card in cards or ():
        value = card_value(card)
        if value == 11:
            aces += 1
        total += value
    return total, aces


def hand_total_detailed(cards: Iterable[Card] | None) -> HandTotal:
    """
    Compute the best total with sequential ace reduction.

    Aces start at 11 and are reduced to 1 one at a time while the total is
    over 21. The hand is soft iff it holds an ace, no ace was reduced, and
    the total is at most 21.
    """
    total, aces = _raw_total(cards)
    reduced = 0
    while total > 21 and aces:
        total -= 10
        aces -= 1
        reduced += 1
    soft = reduced == 0 and aces > 0 and total <= 21
    return HandTotal(total, soft)


def hand_total(cards: Iterable[Card] | None) -> int:
    """Best total <= 21 if achievable, else the minimum possible total."""
    return hand_total_detailed(cards).total


def is_blackjack(cards: Iterable[Card] | None, is_from_split: bool = False) -> bool:
    """A natural: exactly two cards worth 21, never on a split-derived hand."""
    if is_from_split:
        return False
    cards = list(cards or ())
    if len(cards) != 2:
        return False
    return card_value(cards[0]) + card_value(cards[1]) == 21


def can_split_pair(a: Card | None, b: Card | None) -> bool:
    """Split eligibility by value: any two ten-group cards, else matching ranks."""
    if a is None or b is None:
        return False
    if is_ten_group(a) and is_ten_group(b):
        return True
    return getattr(a, "rank", None) is not None and a.rank == getattr(b, "rank", None)


@dataclass(frozen=True)
class RuleSet:
    """
    Blackjack table rules configuration.

    Wagers are whole multiples of ``bet_unit``; a round cannot open while
    the bankroll is below ``min_bet``.
    """

    # Deck configuration
    num_decks: int = 6

    # Betting limits
    min_bet: Decimal = Decimal("5")
    bet_unit: Decimal = Decimal("5")

    # Dealer rules
    dealer_hits_soft_17: bool = True  # H17 vs S17

    # Surrender (late, original two cards only)
    surrender_allowed: bool = False

    # Maximum number of hands reachable by splitting
    max_split_hands: int = 4

    # Presentation pacing handed to the adapter's pause()
    hand_advance_pause: float = 0.5
    result_cycle_pause: float = 1.0

    def __post_init__(self) -> None:
        """Validate rule combinations."""
        if self.num_decks < 1 or self.num_decks > 8:
            raise ValueError("num_decks must be between 1 and 8")
        if Decimal(self.bet_unit) <= 0:
            raise ValueError("bet_unit must be positive")
        if Decimal(self.min_bet) < Decimal(self.bet_unit):
            raise ValueError("min_bet must be at least one bet_unit")
        if self.max_split_hands < 1:
            raise ValueError("max_split_hands must be at least 1")

    @classmethod
    def single_deck(cls) -> "RuleSet":
        """Single deck, dealer stands on soft 17."""
        return cls(num_decks=1, dealer_hits_soft_17=False)

    @classmethod
    def shoe_game(cls) -> "RuleSet":
        """Six-deck H17 shoe game with late surrender."""
        return cls(num_decks=6, dealer_hits_soft_17=True, surrender_allowed=True)
