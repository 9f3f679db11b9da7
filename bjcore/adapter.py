"""
Adapter contract between the round engine and a presentation host.

The engine calls out through these capabilities for everything observable:
rendering, awaited animations, the awaited insurance decision, and
fire-and-forget notifications. A host implements every capability; one
that has nothing to show gives it a no-op body (see ``SilentAdapter``).
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

from bjcore.hand import Outcome
from bjcore.money import ZERO, round_money

if TYPE_CHECKING:
    from bjcore.snapshot import TableSnapshot


class Lane(Enum):
    """Where a dealt card lands."""

    PLAYER = "player"
    DEALER = "dealer"


class FundsReason(Enum):
    """Why the engine is asking for more chips."""

    BANKROLL = "bankroll"  # cannot cover the table minimum to open a round
    ACTION = "action"  # double or split needs a matching wager
    BROKE = "broke"  # bankroll reached zero after settlement
    INSURANCE = "insurance"


@dataclass
class FundsRequest:
    """
    A blocking funds prompt with an explicit retry path.

    ``retry`` re-runs the blocked action after chips were added (a no-op if
    the round it belonged to is over). ``decline`` continues without further
    wagers for the rest of the round.
    """

    reason: FundsReason
    needed: Decimal = ZERO
    available: Decimal = ZERO
    allow_continue: bool = False
    action: str | None = None
    note: str = ""
    retry: Callable[[], Awaitable[Any]] | None = None
    decline: Callable[[], None] | None = None


class PopupOverride(Enum):
    """Result messages already shown this round."""

    PLAYER_BUST = "player_bust"
    DEALER_BUST = "dealer_bust"


@dataclass(frozen=True)
class HandResult:
    """One line of a split-round breakdown."""

    index: int
    outcome: Outcome | None
    total: int
    wager: Decimal
    delta: Decimal
    surrendered: bool = False


@dataclass(frozen=True)
class ResultBreakdown:
    """Structured per-hand result for rounds with more than one hand."""

    dealer_total: int
    hands: tuple[HandResult, ...]
    insurance_delta: Decimal
    round_delta: Decimal

    @property
    def hands_delta(self) -> Decimal:
        return sum((h.delta for h in self.hands), ZERO)


@dataclass(frozen=True)
class RoundSummary:
    """Handed to ``round_settled`` once per round."""

    bankroll_after: Decimal
    delta: Decimal
    round_token: int
    outcomes: tuple[Outcome | None, ...] = field(default_factory=tuple)


@runtime_checkable
class TableAdapter(Protocol):
    """Capabilities a host provides to the engine."""

    # Rendering / labeling
    def render_hands(self, snapshot: "TableSnapshot") -> None: ...

    def update_labels(self, snapshot: "TableSnapshot") -> None: ...

    def refresh_action_amount(self, amount: Decimal) -> None: ...

    def highlight_outcome(self, hand_index: int, outcome: Outcome | None) -> None: ...

    # Animation (awaited; must resolve even on failure)
    async def animate_dealt_card(self, lane: Lane, reveal: bool) -> None: ...

    async def animate_hole_card_reveal(self) -> None: ...

    async def pause(self, seconds: float) -> None: ...

    # Decisions (awaited)
    async def request_insurance(self, max_wager: Decimal) -> Any: ...

    # Notifications (fire-and-forget)
    def notify_funds_insufficient(self, request: FundsRequest) -> None: ...

    def show_result(self, result: str | ResultBreakdown) -> None: ...

    def round_settled(self, summary: RoundSummary) -> None: ...

    # Primitives
    def round_money(self, amount: Decimal) -> Decimal: ...


class SilentAdapter:
    """
    Adapter with no presentation: animations and pauses complete at once,
    insurance is always declined, notifications are dropped.

    Hosts subclass it and override what they actually present.
    """

    def render_hands(self, snapshot: "TableSnapshot") -> None:
        pass

    def update_labels(self, snapshot: "TableSnapshot") -> None:
        pass

    def refresh_action_amount(self, amount: Decimal) -> None:
        pass

    def highlight_outcome(self, hand_index: int, outcome: Outcome | None) -> None:
        pass

    async def animate_dealt_card(self, lane: Lane, reveal: bool) -> None:
        return None

    async def animate_hole_card_reveal(self) -> None:
        return None

    async def pause(self, seconds: float) -> None:
        await asyncio.sleep(0)

    async def request_insurance(self, max_wager: Decimal) -> Any:
        return ZERO

    def notify_funds_insufficient(self, request: FundsRequest) -> None:
        pass

    def show_result(self, result: str | ResultBreakdown) -> None:
        pass

    def round_settled(self, summary: RoundSummary) -> None:
        pass

    def round_money(self, amount: Decimal) -> Decimal:
        return round_money(amount)


def missing_capabilities(adapter: object, names: tuple[str, ...]) -> list[str]:
    """Names in ``names`` that ``adapter`` does not provide as callables."""
    return [name for name in names if not callable(getattr(adapter, name, None))]
