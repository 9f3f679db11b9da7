"""Pytest fixtures for blackjack table tests."""

import asyncio
from decimal import Decimal
from random import Random
from typing import Any

import pytest

from bjcore.adapter import FundsRequest, Lane, ResultBreakdown, RoundSummary, SilentAdapter
from bjcore.cards import Card, Rank, Suit
from bjcore.engine import RoundEngine
from bjcore.hand import Hand
from bjcore.rules import RuleSet
from bjcore.shoe import CutPolicy, Shoe


class StackedRandom(Random):
    """
    Random whose shuffle puts chosen faces first, in order.

    Faces are matched by rank and suit against the unshuffled shoe; the
    remaining cards keep their build order. Random cut placement still
    uses the seeded generator.
    """

    def __init__(self, faces: list[str], seed: int = 7) -> None:
        super().__init__(seed)
        self.faces = [Card.from_string(f) for f in faces]

    def shuffle(self, x: list[Any]) -> None:  # type: ignore[override]
        rest = list(x)
        front = []
        for face in self.faces:
            for i, card in enumerate(rest):
                if card.same_face(face):
                    front.append(rest.pop(i))
                    break
        x[:] = front + rest


class RecordingAdapter(SilentAdapter):
    """Adapter that records every call; insurance answers with a fixed stake."""

    def __init__(self, insurance: Any = 0) -> None:
        self.insurance = insurance
        self.calls: list[tuple[str, tuple]] = []
        self.results: list[str | ResultBreakdown] = []
        self.funds: list[FundsRequest] = []
        self.summaries: list[RoundSummary] = []
        self.highlights: list[tuple[int, Any]] = []
        self.insurance_offers: list[Decimal] = []

    def render_hands(self, snapshot) -> None:
        self.calls.append(("render_hands", ()))

    async def animate_dealt_card(self, lane: Lane, reveal: bool) -> None:
        self.calls.append(("animate_dealt_card", (lane, reveal)))

    async def animate_hole_card_reveal(self) -> None:
        self.calls.append(("animate_hole_card_reveal", ()))

    async def pause(self, seconds: float) -> None:
        self.calls.append(("pause", (seconds,)))
        await asyncio.sleep(0)

    async def request_insurance(self, max_wager: Decimal) -> Any:
        self.insurance_offers.append(max_wager)
        return self.insurance

    def notify_funds_insufficient(self, request: FundsRequest) -> None:
        self.funds.append(request)

    def show_result(self, result: str | ResultBreakdown) -> None:
        self.results.append(result)

    def round_settled(self, summary: RoundSummary) -> None:
        self.summaries.append(summary)

    def highlight_outcome(self, hand_index: int, outcome: Any) -> None:
        self.highlights.append((hand_index, outcome))


def make_engine(
    faces: list[str],
    adapter: SilentAdapter | None = None,
    bankroll: Any = 1000,
    wager: Any = 10,
    num_decks: int = 1,
    **rules: Any,
) -> RoundEngine:
    """
    Engine over a shoe whose first cards are ``faces``.

    Opening deal order is player, dealer up, player, dealer hole.
    """
    ruleset = RuleSet(num_decks=num_decks, hand_advance_pause=0, result_cycle_pause=0, **rules)
    return RoundEngine(
        adapter=adapter or RecordingAdapter(),
        rules=ruleset,
        bankroll=bankroll,
        wager=wager,
        rng=StackedRandom(faces),
    )


@pytest.fixture
def make_table():
    """Factory for engines over a stacked shoe."""
    return make_engine


@pytest.fixture
def recording():
    """Factory for recording adapters (pass the insurance stake to take)."""
    return RecordingAdapter


@pytest.fixture
def stacked():
    """Factory for shufflers that stack the given faces on top of the shoe."""
    return StackedRandom


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return Random(42)


@pytest.fixture
def shoe(rng):
    """A shuffled 6-deck shoe at 75% penetration."""
    s = Shoe(num_decks=6, cut_policy=CutPolicy(penetration_percent=75), rng=rng)
    s.new_shuffled_shoe()
    return s


@pytest.fixture
def adapter():
    """Recording adapter that declines insurance."""
    return RecordingAdapter()


@pytest.fixture
def rules():
    """Default ruleset with no presentation pauses."""
    return RuleSet(hand_advance_pause=0, result_cycle_pause=0)


@pytest.fixture
def engine(adapter, rules, rng):
    """A table with a $1000 bankroll and $10 wager over a random shoe."""
    return RoundEngine(adapter=adapter, rules=rules, bankroll=1000, wager=10, rng=rng)


@pytest.fixture
def blackjack_hand():
    """A natural blackjack hand."""
    return Hand(cards=[Card(Rank.ACE, Suit.SPADES), Card(Rank.KING, Suit.HEARTS)])


@pytest.fixture
def soft_17_hand():
    """A soft 17 hand (A-6)."""
    return Hand(cards=[Card(Rank.ACE, Suit.SPADES), Card(Rank.SIX, Suit.HEARTS)])


@pytest.fixture
def pair_8s_hand():
    """A pair of 8s hand."""
    return Hand(
        cards=[Card(Rank.EIGHT, Suit.SPADES), Card(Rank.EIGHT, Suit.HEARTS)],
        wager=Decimal("10"),
    )

