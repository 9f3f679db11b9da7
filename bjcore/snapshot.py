"""Immutable views of table state broadcast to subscribers."""

from dataclasses import dataclass
from decimal import Decimal

from bjcore.cards import Card
from bjcore.hand import Hand, Outcome
from bjcore.state import RoundPhase


@dataclass(frozen=True)
class HandView:
    """Read-only copy of one player hand."""

    cards: tuple[Card, ...]
    wager: Decimal
    total: int
    soft: bool
    is_from_split: bool
    is_ace_split: bool
    is_done: bool
    is_busted: bool
    is_blackjack: bool
    is_surrendered: bool
    is_doubled: bool
    has_acted: bool
    needs_post_split_card: bool
    outcome: Outcome | None

    @classmethod
    def of(cls, hand: Hand) -> "HandView":
        return cls(
            cards=tuple(hand.cards),
            wager=hand.wager,
            total=hand.value,
            soft=hand.is_soft,
            is_from_split=hand.is_from_split,
            is_ace_split=hand.is_ace_split,
            is_done=hand.is_done,
            is_busted=hand.is_busted,
            is_blackjack=hand.is_blackjack,
            is_surrendered=hand.is_surrendered,
            is_doubled=hand.is_doubled,
            has_acted=hand.has_acted,
            needs_post_split_card=hand.needs_post_split_card,
            outcome=hand.outcome,
        )


@dataclass(frozen=True)
class ShoeStatus:
    """Shoe counters for display and dev tools."""

    shoe_id: int
    num_decks: int
    total_cards: int
    array_length: int
    cards_remaining: int
    discard_count: int
    cards_until_cut: int | None
    penetration_percent: int
    random_cut: bool


@dataclass(frozen=True)
class Availability:
    """Which actions the host may offer right now."""

    can_deal: bool = False
    can_hit: bool = False
    can_stand: bool = False
    can_double: bool = False
    can_split: bool = False
    can_surrender: bool = False
    can_insure: bool = False


@dataclass(frozen=True)
class TableSnapshot:
    """
    Immutable state broadcast after every action.

    ``dealer_cards`` holds only the cards currently visible; a face-down
    hole card is reported as ``None``. ``dealer_total`` is frozen to the
    visible cards while a reveal is in flight.
    """

    phase: RoundPhase
    round_token: int
    in_round: bool
    bankroll: Decimal
    wager: Decimal
    starting_bankroll: Decimal | None
    insurance_wager: Decimal
    insurance_offer: Decimal | None
    chips_in_action: Decimal
    hands: tuple[HandView, ...]
    active_hand_index: int
    dealer_cards: tuple[Card | None, ...]
    dealer_total: int
    hole_card_hidden: bool
    shuffle_pending: bool
    no_new_bets: bool
    game_over: bool
    shoe: ShoeStatus
    available: Availability

    @property
    def active_hand(self) -> HandView | None:
        if 0 <= self.active_hand_index < len(self.hands):
            return self.hands[self.active_hand_index]
        return None
