"""Hand model, outcome evaluation and payouts."""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Iterator, Sequence

from bjcore.cards import Card
from bjcore.money import ZERO, blackjack_return, round_money
from bjcore.rules import can_split_pair, hand_total, hand_total_detailed, is_blackjack


class Outcome(Enum):
    """Settled result of one player hand."""

    WIN = "win"
    LOSE = "lose"
    PUSH = "push"
    BLACKJACK = "blackjack"

    def __str__(self) -> str:
        return self.value


@dataclass
class Hand:
    """A player hand within one round."""

    cards: list[Card] = field(default_factory=list)
    wager: Decimal = ZERO
    is_from_split: bool = False
    is_ace_split: bool = False
    is_done: bool = False
    outcome: Outcome | None = None
    has_acted: bool = False
    is_surrendered: bool = False
    is_doubled: bool = False
    needs_post_split_card: bool = False

    def add_card(self, card: Card) -> None:
        """Add a card to the hand."""
        self.cards.append(card)

    @property
    def value(self) -> int:
        """Best total (aces reduced as needed)."""
        return hand_total(self.cards)

    @property
    def is_soft(self) -> bool:
        return hand_total_detailed(self.cards).soft

    @property
    def is_blackjack(self) -> bool:
        """Natural 21 on the original two cards."""
        return is_blackjack(self.cards, self.is_from_split)

    @property
    def is_busted(self) -> bool:
        return self.value > 21

    @property
    def is_splittable_pair(self) -> bool:
        """Two cards that may be split by value."""
        return len(self.cards) == 2 and can_split_pair(self.cards[0], self.cards[1])

    @property
    def is_pair_of_aces(self) -> bool:
        return len(self.cards) == 2 and all(card.is_ace for card in self.cards)

    def split(self) -> tuple["Hand", "Hand"]:
        """
        Produce the two one-card hands that replace this pair.

        Each new hand carries the original wager. Only the first is dealt
        its second card right away; the second waits until it becomes active.
        """
        if len(self.cards) != 2:
            raise ValueError("Only a two-card hand can be split")
        aces = self.is_pair_of_aces
        first = Hand(
            cards=[self.cards[0]],
            wager=self.wager,
            is_from_split=True,
            is_ace_split=aces,
        )
        second = replace(first, cards=[self.cards[1]], needs_post_split_card=True)
        return first, second

    def __len__(self) -> int:
        return len(self.cards)

    def __iter__(self) -> Iterator[Card]:
        return iter(self.cards)

    def __str__(self) -> str:
        cards_str = " ".join(str(card) for card in self.cards)
        value_str = f"({self.value})"
        if self.is_soft:
            value_str = f"(soft {self.value})"
        if self.is_blackjack:
            value_str = "(BLACKJACK)"
        if self.is_busted:
            value_str = "(BUST)"
        return f"{cards_str} {value_str}"


def evaluate_hand(hand: Hand, dealer_cards: Sequence[Card]) -> Outcome:
    """
    Compare a finished player hand against the dealer's final cards.

    Player bust loses, dealer bust wins, higher total wins, equal totals
    push. A win on a natural two-card 21 is reclassified as blackjack.
    """
    player_value = hand.value
    dealer_value = hand_total(dealer_cards)

    if hand.is_surrendered or player_value > 21:
        return Outcome.LOSE
    if dealer_value > 21 or player_value > dealer_value:
        outcome = Outcome.WIN
    elif player_value < dealer_value:
        return Outcome.LOSE
    else:
        return Outcome.PUSH

    if hand.is_blackjack:
        return Outcome.BLACKJACK
    return outcome


def hand_return(hand: Hand) -> Decimal:
    """
    Amount credited back to the bankroll for a settled hand.

    The wager was deducted when it was placed, so a loss returns nothing,
    a push returns the stake, a win returns 2x and a blackjack 2.5x
    (truncated to whole units).
    """
    if hand.outcome is Outcome.WIN:
        return hand.wager * 2
    if hand.outcome is Outcome.PUSH:
        return hand.wager
    if hand.outcome is Outcome.BLACKJACK:
        return blackjack_return(hand.wager)
    return ZERO


def hand_delta(hand: Hand) -> Decimal:
    """Net bankroll change for a settled hand."""
    if hand.is_surrendered:
        return round_money(hand.wager / 2) - hand.wager
    return hand_return(hand) - hand.wager
