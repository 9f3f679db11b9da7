"""Pydantic schemas for API requests and responses."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from bjcore.adapter import FundsRequest, ResultBreakdown
from bjcore.cards import Card
from bjcore.counting import KOCounter
from bjcore.engine import ActionResult
from bjcore.ledger import BankrollLedger
from bjcore.snapshot import HandView, TableSnapshot

ActionName = Literal[
    "NEW_SHOE",
    "START_ROUND",
    "HIT",
    "STAND",
    "DOUBLE",
    "SPLIT",
    "SURRENDER",
    "INSURANCE_DECISION",
]


# Request schemas
class ActionRequest(BaseModel):
    """Request for a table action."""

    action: ActionName
    amount: float | None = Field(
        default=None,
        ge=0,
        description="Wager for START_ROUND, insurance stake for INSURANCE_DECISION",
    )


class FundsRequestBody(BaseModel):
    """Request to add chips to the bankroll."""

    amount: float = Field(..., gt=0, description="Chips to add (rounded down to 0.50)")
    retry: bool = Field(default=True, description="Re-run the action that needed the chips")


class CutPolicyRequest(BaseModel):
    """Cut marker placement for the next (or current, if undealt) shoe."""

    random_placement: bool = False
    penetration_percent: float = Field(default=75, description="Clamped to 65-90, 5% steps")


# Response schemas
class CardResponse(BaseModel):
    """Card representation."""

    model_config = ConfigDict(from_attributes=True)

    rank: str
    suit: str
    value: int
    card_id: str

    @classmethod
    def from_card(cls, card: Card) -> "CardResponse":
        return cls(rank=str(card.rank), suit=str(card.suit), value=card.value, card_id=card.card_id)


class HandResponse(BaseModel):
    """Player hand representation."""

    cards: list[CardResponse]
    total: int
    is_soft: bool
    is_blackjack: bool
    is_busted: bool
    is_done: bool
    is_from_split: bool
    is_doubled: bool
    is_surrendered: bool
    wager: float
    outcome: str | None

    @classmethod
    def from_view(cls, hand: HandView) -> "HandResponse":
        return cls(
            cards=[CardResponse.from_card(c) for c in hand.cards],
            total=hand.total,
            is_soft=hand.soft,
            is_blackjack=hand.is_blackjack,
            is_busted=hand.is_busted,
            is_done=hand.is_done,
            is_from_split=hand.is_from_split,
            is_doubled=hand.is_doubled,
            is_surrendered=hand.is_surrendered,
            wager=float(hand.wager),
            outcome=hand.outcome.value if hand.outcome else None,
        )


class ShoeResponse(BaseModel):
    """Shoe counters."""

    model_config = ConfigDict(from_attributes=True)

    shoe_id: int
    num_decks: int
    total_cards: int
    cards_remaining: int
    discard_count: int
    cards_until_cut: int | None
    penetration_percent: int
    random_cut: bool


class AvailabilityResponse(BaseModel):
    """Which actions are currently offered."""

    model_config = ConfigDict(from_attributes=True)

    can_deal: bool
    can_hit: bool
    can_stand: bool
    can_double: bool
    can_split: bool
    can_surrender: bool
    can_insure: bool


class TableStateResponse(BaseModel):
    """Current table state."""

    phase: str
    round_token: int
    in_round: bool
    bankroll: float
    wager: float
    insurance_wager: float
    insurance_offer: float | None
    chips_in_action: float
    hands: list[HandResponse]
    active_hand_index: int
    dealer_cards: list[CardResponse | None]
    dealer_total: int
    hole_card_hidden: bool
    shuffle_pending: bool
    no_new_bets: bool
    game_over: bool
    shoe: ShoeResponse
    available: AvailabilityResponse

    @classmethod
    def from_snapshot(cls, snapshot: TableSnapshot) -> "TableStateResponse":
        return cls(
            phase=snapshot.phase.value,
            round_token=snapshot.round_token,
            in_round=snapshot.in_round,
            bankroll=float(snapshot.bankroll),
            wager=float(snapshot.wager),
            insurance_wager=float(snapshot.insurance_wager),
            insurance_offer=(
                float(snapshot.insurance_offer) if snapshot.insurance_offer is not None else None
            ),
            chips_in_action=float(snapshot.chips_in_action),
            hands=[HandResponse.from_view(h) for h in snapshot.hands],
            active_hand_index=snapshot.active_hand_index,
            dealer_cards=[
                CardResponse.from_card(c) if c is not None else None
                for c in snapshot.dealer_cards
            ],
            dealer_total=snapshot.dealer_total,
            hole_card_hidden=snapshot.hole_card_hidden,
            shuffle_pending=snapshot.shuffle_pending,
            no_new_bets=snapshot.no_new_bets,
            game_over=snapshot.game_over,
            shoe=ShoeResponse.model_validate(snapshot.shoe),
            available=AvailabilityResponse.model_validate(snapshot.available),
        )


class HandResultResponse(BaseModel):
    """One hand of a split-round breakdown."""

    index: int
    outcome: str | None
    total: int
    wager: float
    delta: float
    surrendered: bool


class ResultResponse(BaseModel):
    """A result message, or a per-hand breakdown for split rounds."""

    message: str | None = None
    dealer_total: int | None = None
    hands: list[HandResultResponse] = []
    insurance_delta: float | None = None
    round_delta: float | None = None

    @classmethod
    def from_result(cls, result: str | ResultBreakdown) -> "ResultResponse":
        if isinstance(result, str):
            return cls(message=result)
        return cls(
            dealer_total=result.dealer_total,
            hands=[
                HandResultResponse(
                    index=h.index,
                    outcome=h.outcome.value if h.outcome else None,
                    total=h.total,
                    wager=float(h.wager),
                    delta=float(h.delta),
                    surrendered=h.surrendered,
                )
                for h in result.hands
            ],
            insurance_delta=float(result.insurance_delta),
            round_delta=float(result.round_delta),
        )


class FundsPromptResponse(BaseModel):
    """A pending request for more chips."""

    reason: Literal["bankroll", "action", "broke", "insurance"]
    needed: float
    available: float
    allow_continue: bool
    action: str | None
    note: str

    @classmethod
    def from_request(cls, request: FundsRequest) -> "FundsPromptResponse":
        return cls(
            reason=request.reason.value,
            needed=float(request.needed),
            available=float(request.available),
            allow_continue=request.allow_continue,
            action=request.action,
            note=request.note,
        )


class ActionResponse(BaseModel):
    """Outcome of an action plus the table state it left behind."""

    accepted: bool
    reason: str | None = None
    funds_needed: bool = False
    awaiting_insurance: bool = False
    results: list[ResultResponse] = []
    funds_prompt: FundsPromptResponse | None = None
    state: TableStateResponse

    @classmethod
    def build(
        cls,
        result: ActionResult | None,
        snapshot: TableSnapshot,
        results: list[str | ResultBreakdown],
        funds: FundsRequest | None,
        awaiting_insurance: bool,
    ) -> "ActionResponse":
        return cls(
            accepted=result.accepted if result is not None else True,
            reason=result.reason if result is not None else None,
            funds_needed=result.funds_needed if result is not None else False,
            awaiting_insurance=awaiting_insurance,
            results=[ResultResponse.from_result(r) for r in results],
            funds_prompt=FundsPromptResponse.from_request(funds) if funds else None,
            state=TableStateResponse.from_snapshot(snapshot),
        )


class NewTableResponse(BaseModel):
    """A freshly opened table."""

    session_id: str
    state: TableStateResponse


class CutPolicyResponse(BaseModel):
    """Normalized cut policy."""

    model_config = ConfigDict(from_attributes=True)

    random_placement: bool
    penetration_percent: int


class LedgerPointResponse(BaseModel):
    """Bankroll after one settled hand."""

    index: int
    bankroll_after: float


class LedgerResponse(BaseModel):
    """Rolling bankroll ledger."""

    hand_counter: int
    bankroll: float | None
    max_hands: int
    points: list[LedgerPointResponse]

    @classmethod
    def from_ledger(cls, ledger: BankrollLedger) -> "LedgerResponse":
        return cls(
            hand_counter=ledger.hand_counter,
            bankroll=float(ledger.bankroll) if ledger.bankroll is not None else None,
            max_hands=ledger.max_hands,
            points=[
                LedgerPointResponse(index=e.index, bankroll_after=float(e.bankroll_after))
                for e in ledger.entries
            ],
        )


class CountResponse(BaseModel):
    """KO running count for the current shoe."""

    running_count: int
    cards_seen: int
    shoe_id: int

    @classmethod
    def from_counter(cls, counter: KOCounter, shoe_id: int) -> "CountResponse":
        return cls(
            running_count=counter.running_count,
            cards_seen=counter.cards_seen,
            shoe_id=shoe_id,
        )
