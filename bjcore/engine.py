"""Round engine: the per-round state machine of a multi-hand blackjack table."""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from random import Random
from typing import Any, Awaitable, Callable, Coroutine

from transitions import Machine

from bjcore.adapter import (
    FundsReason,
    FundsRequest,
    HandResult,
    Lane,
    PopupOverride,
    ResultBreakdown,
    RoundSummary,
    TableAdapter,
    missing_capabilities,
)
from bjcore.cards import Card, Rank, Suit
from bjcore.errors import AdapterConfigurationError, UnknownActionError
from bjcore.events import EventEmitter, EventType
from bjcore.hand import Hand, Outcome, evaluate_hand, hand_delta, hand_return
from bjcore.money import (
    ZERO,
    blackjack_return,
    floor_to_half_unit,
    floor_to_unit,
    format_money,
    to_money,
)
from bjcore.rules import RuleSet, hand_total, hand_total_detailed, is_blackjack
from bjcore.shoe import CutPolicy, DrawResult, Shoe
from bjcore.snapshot import Availability, HandView, ShoeStatus, TableSnapshot
from bjcore.state import Action, RoundPhase

logger = logging.getLogger(__name__)


_DEALING = (
    "render_hands",
    "update_labels",
    "refresh_action_amount",
    "highlight_outcome",
    "animate_dealt_card",
    "animate_hole_card_reveal",
    "pause",
    "notify_funds_insufficient",
    "show_result",
    "round_settled",
    "round_money",
)

# Adapter capabilities each action needs before it may touch state.
REQUIRED_CAPABILITIES: dict[Action, tuple[str, ...]] = {
    Action.NEW_SHOE: ("render_hands",),
    Action.START_ROUND: _DEALING + ("request_insurance",),
    Action.HIT: _DEALING,
    Action.STAND: _DEALING,
    Action.DOUBLE: _DEALING,
    Action.SPLIT: _DEALING,
    Action.SURRENDER: _DEALING,
    Action.INSURANCE_DECISION: (),
}


class DealScenario(Enum):
    """Forced opening deals for demos and manual testing."""

    NONE = "none"
    INSURANCE_DEALER_BJ = "insurance_dealer_bj"  # dealer A up, ten in the hole
    INSURANCE_NO_BJ = "insurance_no_bj"  # dealer A up, nine in the hole


@dataclass
class DevOptions:
    """Deterministic deal switches; both draw from the real shoe."""

    scenario: DealScenario = DealScenario.NONE
    force_split_pairs: bool = False


@dataclass(frozen=True)
class ActionResult:
    """What happened to a dispatched action."""

    action: Action
    accepted: bool
    reason: str | None = None
    funds_needed: bool = False


@dataclass(frozen=True)
class ActionInfo:
    """Second argument of every snapshot broadcast."""

    type: str
    payload: Any = None


SnapshotListener = Callable[[TableSnapshot, ActionInfo], None]


@dataclass
class Round:
    """State owned by one round, replaced wholesale by the next START_ROUND."""

    token: int
    wager: Decimal
    starting_bankroll: Decimal
    hands: list[Hand]
    active_hand_index: int = 0
    dealer_cards: list[Card] = field(default_factory=list)
    hole_card_hidden: bool = True
    dealer_visible_count: int = 0
    insurance_wager: Decimal = ZERO
    insurance_delta: Decimal = ZERO
    doubled_this_hand: bool = False
    popup_override: PopupOverride | None = None

    @property
    def active_hand(self) -> Hand | None:
        if 0 <= self.active_hand_index < len(self.hands):
            return self.hands[self.active_hand_index]
        return None


@dataclass
class TableState:
    """Everything the engine owns for the life of a table session."""

    bankroll: Decimal
    wager: Decimal
    round: Round | None = None
    in_round: bool = False
    token: int = 0
    shuffle_pending: bool = False
    no_new_bets: bool = False
    finalized_token: int | None = None
    dev: DevOptions = field(default_factory=DevOptions)


class RoundEngine:
    """
    Blackjack round engine using a state machine.

    The engine processes one action at a time. A round is not atomic: it
    suspends on awaited adapter calls (animations, the insurance decision,
    pauses). Every deferred continuation captures the round token and checks
    ``is_stale`` before touching shared state, so a newer round always wins.
    """

    # State machine states
    STATES = [p.value for p in RoundPhase]

    # State machine transitions
    TRANSITIONS = [
        {"trigger": "begin_deal", "source": "idle", "dest": "dealing"},
        {"trigger": "offer_insurance", "source": "dealing", "dest": "insurance"},
        {"trigger": "begin_play", "source": ["dealing", "insurance"], "dest": "player_turn"},
        {"trigger": "begin_dealer_turn", "source": "player_turn", "dest": "dealer_turn"},
        {
            "trigger": "begin_settlement",
            "source": ["dealing", "insurance", "player_turn", "dealer_turn"],
            "dest": "settling",
        },
        {"trigger": "finish_round", "source": "settling", "dest": "idle"},
        {"trigger": "end_game", "source": "*", "dest": "game_over", "after": "_on_game_over"},
    ]

    def __init__(
        self,
        adapter: TableAdapter,
        rules: RuleSet | None = None,
        bankroll: Decimal | int | str = Decimal("1000"),
        wager: Decimal | int | str | None = None,
        cut_policy: CutPolicy | None = None,
        rng: Random | None = None,
        shoe: Shoe | None = None,
    ) -> None:
        """
        Initialize a table.

        Args:
            adapter: Presentation host implementing the adapter contract
            rules: Table rules (uses defaults if not provided)
            bankroll: Starting bankroll
            wager: Initial wager setting (defaults to the table minimum)
            cut_policy: Cut marker placement for the shoe
            rng: Random number generator for reproducible shoes
            shoe: Pre-built shoe (overrides num_decks/cut_policy/rng)
        """
        self.rules = rules or RuleSet()
        self.adapter = adapter
        self.shoe = shoe or Shoe(
            num_decks=self.rules.num_decks,
            cut_policy=cut_policy,
            rng=rng,
        )
        self.events = EventEmitter()
        self.table = TableState(
            bankroll=to_money(bankroll),
            wager=to_money(wager if wager is not None else self.rules.min_bet),
        )

        self._listeners: list[SnapshotListener] = []
        self._lock = asyncio.Lock()
        self._insurance_future: asyncio.Future | None = None
        self._insurance_offer: Decimal | None = None
        self._decision_open = asyncio.Event()
        self._revealed_ids: set[str] = set()
        self._known_shoe_id = 0
        self._tasks: set[asyncio.Task] = set()

        self._handlers: dict[Action, Callable[[Any], Awaitable[ActionResult]]] = {
            Action.NEW_SHOE: self._new_shoe_action,
            Action.START_ROUND: self._start_round,
            Action.HIT: self._hit,
            Action.STAND: self._stand,
            Action.DOUBLE: self._double,
            Action.SPLIT: self._split,
            Action.SURRENDER: self._surrender,
        }

        self.shoe.new_shuffled_shoe()
        self._sync_shoe()

        # Initialize state machine
        self.machine = Machine(
            model=self,
            states=self.STATES,
            transitions=self.TRANSITIONS,
            initial=RoundPhase.IDLE.value,
            auto_transitions=False,
            model_attribute="_machine_state",
        )

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def phase(self) -> RoundPhase:
        """Get current round phase as enum."""
        return RoundPhase(self._machine_state)  # type: ignore[attr-defined]

    @property
    def bankroll(self) -> Decimal:
        return self.table.bankroll

    @property
    def in_round(self) -> bool:
        return self.table.in_round

    def is_stale(self, token: int) -> bool:
        """True once a newer round (or game over) has superseded ``token``."""
        return token != self.table.token

    async def dispatch(self, action: Action | str, payload: Any = None) -> ActionResult:
        """
        Run one action to completion and broadcast the new snapshot.

        Raises:
            UnknownActionError: ``action`` is not one of ``Action``
            AdapterConfigurationError: the adapter lacks a capability the
                action needs; raised before any state is touched
        """
        try:
            action = Action(action)
        except ValueError:
            raise UnknownActionError(action) from None

        missing = missing_capabilities(self.adapter, REQUIRED_CAPABILITIES[action])
        if missing:
            raise AdapterConfigurationError(action.value, missing)

        if action is Action.INSURANCE_DECISION:
            # Resolves a suspension inside START_ROUND, so it must not queue behind it.
            result = self._resolve_insurance(payload)
        else:
            async with self._lock:
                result = await self._handlers[action](payload)

        self._broadcast(ActionInfo(action.value, payload))
        return result

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register for snapshot broadcasts; the listener gets one immediately."""
        self._listeners.append(listener)
        try:
            listener(self.snapshot(), ActionInfo("SUBSCRIBE_INIT"))
        except Exception:
            logger.exception("Snapshot listener failed on subscribe")

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_for_decision(self) -> None:
        """Resolve once the engine is suspended on the insurance decision."""
        await self._decision_open.wait()

    @property
    def awaiting_insurance(self) -> bool:
        return self._insurance_future is not None and not self._insurance_future.done()

    async def drain(self) -> None:
        """Wait for spawned continuations (result cycling) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def set_wager(self, amount: Decimal | int | str) -> bool:
        """Change the wager for the next round; refused mid-round."""
        if self.table.in_round or self.phase is RoundPhase.GAME_OVER:
            return False
        value = to_money(amount)
        if value <= 0:
            return False
        self.table.wager = value
        self._labels()
        return True

    def set_cut_policy(
        self,
        random_placement: bool = False,
        penetration_percent: object = 75,
    ) -> CutPolicy:
        """Normalize and hand a new cut policy to the shoe."""
        policy = self.shoe.set_cut_policy(
            CutPolicy.normalized(random_placement, penetration_percent)
        )
        self._broadcast(ActionInfo("SET_CUT_POLICY", policy))
        return policy

    def set_dev_options(self, options: DevOptions) -> None:
        self.table.dev = options

    def add_funds(self, amount: Decimal | int | str) -> Decimal:
        """
        Add chips (rounded down to 0.50) and re-allow new bets this round.

        Returns:
            The bankroll after the deposit
        """
        value = floor_to_half_unit(amount)
        if value <= 0 or self.phase is RoundPhase.GAME_OVER:
            return self.table.bankroll
        self.table.bankroll = self._money(self.table.bankroll + value)
        self.table.no_new_bets = False
        self.events.emit_new(
            EventType.FUNDS_ADDED,
            amount=value,
            bankroll=self.table.bankroll,
        )
        logger.info("Added %s; bankroll now %s", value, self.table.bankroll)
        self._labels()
        self._broadcast(ActionInfo("ADD_FUNDS", value))
        return self.table.bankroll

    def decline_funds(self, request: FundsRequest) -> None:
        """Continue without adding chips; double/split stay off for this round."""
        if request.decline is not None:
            request.decline()
        self._broadcast(ActionInfo("DECLINE_FUNDS", request.reason.value))

    def finalize_round(self, token: int | None = None) -> bool:
        """
        End-of-round cleanup, at most once per round.

        Leaves the dealer hand fully revealed and its total unfrozen. Safe to
        call from any path; only the first call for a settled round acts.
        """
        t = self.table
        rnd = t.round
        token = t.token if token is None else token
        if rnd is None or t.in_round or not rnd.dealer_cards:
            return False
        if rnd.token != token or t.finalized_token == token:
            return False
        t.finalized_token = token

        rnd.hole_card_hidden = False
        rnd.dealer_visible_count = len(rnd.dealer_cards)
        for card in rnd.dealer_cards:
            self._reveal(card)
        self._render()
        self._labels()
        return True

    def snapshot(self) -> TableSnapshot:
        """Build an immutable view of the current table state."""
        t = self.table
        rnd = t.round
        hands: tuple[HandView, ...] = ()
        dealer_cards: tuple[Card | None, ...] = ()
        dealer_total = 0
        hole_hidden = False
        active_index = 0
        insurance_wager = ZERO
        chips = ZERO

        if rnd is not None:
            hands = tuple(HandView.of(h) for h in rnd.hands)
            hole_hidden = rnd.hole_card_hidden
            dealer_cards = tuple(
                None if (i == 1 and hole_hidden) else card
                for i, card in enumerate(rnd.dealer_cards)
            )
            visible = [
                card
                for i, card in enumerate(rnd.dealer_cards[: rnd.dealer_visible_count])
                if not (i == 1 and hole_hidden)
            ]
            dealer_total = hand_total(visible)
            active_index = rnd.active_hand_index
            if t.in_round:
                insurance_wager = rnd.insurance_wager
                chips = sum((h.wager for h in rnd.hands), ZERO) + insurance_wager

        policy = self.shoe.cut_policy
        return TableSnapshot(
            phase=self.phase,
            round_token=t.token,
            in_round=t.in_round,
            bankroll=t.bankroll,
            wager=t.wager,
            starting_bankroll=rnd.starting_bankroll if rnd is not None else None,
            insurance_wager=insurance_wager,
            insurance_offer=self._insurance_offer,
            chips_in_action=chips,
            hands=hands,
            active_hand_index=active_index,
            dealer_cards=dealer_cards,
            dealer_total=dealer_total,
            hole_card_hidden=hole_hidden,
            shuffle_pending=t.shuffle_pending,
            no_new_bets=t.no_new_bets,
            game_over=self.phase is RoundPhase.GAME_OVER,
            shoe=ShoeStatus(
                shoe_id=self.shoe.shoe_id,
                num_decks=self.shoe.num_decks,
                total_cards=self.shoe.total_cards,
                array_length=self.shoe.array_length,
                cards_remaining=self.shoe.cards_remaining,
                discard_count=self.shoe.discard_count,
                cards_until_cut=self.shoe.cards_until_cut,
                penetration_percent=policy.penetration_percent,
                random_cut=policy.random_placement,
            ),
            available=self._availability(),
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _new_shoe_action(self, payload: Any) -> ActionResult:
        if self.table.in_round or self.phase is not RoundPhase.IDLE:
            return self._reject(Action.NEW_SHOE, "Cannot change shoes mid-round")
        self._new_shoe()
        self._render()
        return ActionResult(Action.NEW_SHOE, True)

    async def _start_round(self, payload: Any) -> ActionResult:
        t = self.table
        if self.phase is RoundPhase.GAME_OVER:
            return self._reject(Action.START_ROUND, "Game is over")
        if t.in_round or self.phase is not RoundPhase.IDLE:
            return self._reject(Action.START_ROUND, "Round already in progress")

        requested = _payload_amount(payload, "wager")
        min_bet = to_money(self.rules.min_bet)
        if t.bankroll < min_bet:
            return self._funds_needed(
                Action.START_ROUND,
                FundsReason.BANKROLL,
                needed=min_bet,
                note=f"Minimum bet is {format_money(min_bet)}.",
                allow_continue=False,
            )

        if t.shuffle_pending:
            logger.info("Performing between-hands shuffle")
            self._new_shoe()

        t.token += 1
        token = t.token
        t.no_new_bets = False
        self._insurance_offer = None

        unit = to_money(self.rules.bet_unit)
        wager = requested if requested is not None else t.wager
        wager = max(unit, floor_to_unit(wager, unit))
        if wager > t.bankroll:
            wager = max(unit, floor_to_unit(t.bankroll, unit))
        t.wager = wager

        starting = t.bankroll
        t.bankroll = max(ZERO, self._money(t.bankroll - wager))
        t.round = Round(
            token=token,
            wager=wager,
            starting_bankroll=starting,
            hands=[Hand(wager=wager)],
        )
        t.in_round = True
        self.begin_deal()
        self.events.emit_new(
            EventType.ROUND_STARTED,
            token=token,
            wager=wager,
            bankroll=t.bankroll,
        )
        logger.info("Round %d started: wager %s, bankroll %s", token, wager, t.bankroll)
        self._labels()

        await self._deal_opening(token)
        if self.is_stale(token):
            return ActionResult(Action.START_ROUND, True)

        ended = await self._insurance_and_peek(token)
        if not ended and not self.is_stale(token):
            self.begin_play()
            self._render()
        return ActionResult(Action.START_ROUND, True)

    async def _hit(self, payload: Any) -> ActionResult:
        hand = self._actionable_hand()
        if hand is None:
            return self._reject(Action.HIT, "No hand can act")
        token = self.table.token

        hand.has_acted = True
        card = self._draw()
        self.events.emit_new(EventType.PLAYER_HIT, hand_index=self._active_index())
        await self._deal_card(card, Lane.PLAYER, hand.cards)
        if self.is_stale(token):
            return ActionResult(Action.HIT, True)

        if hand.is_busted:
            self._bust(hand)
            await self._advance(token)
            return ActionResult(Action.HIT, True)

        self._render()
        return ActionResult(Action.HIT, True)

    async def _stand(self, payload: Any) -> ActionResult:
        hand = self._actionable_hand()
        if hand is None:
            return self._reject(Action.STAND, "No hand can act")
        token = self.table.token

        hand.has_acted = True
        hand.is_done = True
        self.events.emit_new(
            EventType.PLAYER_STAND,
            hand_index=self._active_index(),
            hand_value=hand.value,
        )
        await self._advance(token)
        return ActionResult(Action.STAND, True)

    async def _double(self, payload: Any) -> ActionResult:
        t = self.table
        hand = self._actionable_hand()
        rnd = t.round
        if hand is None or rnd is None:
            return self._reject(Action.DOUBLE, "No hand can act")
        if len(hand.cards) != 2 or hand.is_doubled or rnd.doubled_this_hand:
            return self._reject(Action.DOUBLE, "Can only double on two cards")
        if t.no_new_bets:
            return self._reject(Action.DOUBLE, "No new bets this round")

        extra = hand.wager
        if t.bankroll < extra:
            return self._funds_needed(
                Action.DOUBLE,
                FundsReason.ACTION,
                needed=extra,
                note="Add chips to DOUBLE, or continue the hand.",
            )

        token = t.token
        hand.has_acted = True
        t.bankroll = max(ZERO, self._money(t.bankroll - extra))
        hand.wager = hand.wager * 2
        hand.is_doubled = True
        rnd.doubled_this_hand = True
        self.events.emit_new(
            EventType.PLAYER_DOUBLE,
            hand_index=self._active_index(),
            new_wager=hand.wager,
        )
        self._labels()

        card = self._draw()
        await self._deal_card(card, Lane.PLAYER, hand.cards)
        if self.is_stale(token):
            return ActionResult(Action.DOUBLE, True)

        if hand.is_busted:
            self._bust(hand)
        hand.is_done = True
        await self._advance(token)
        return ActionResult(Action.DOUBLE, True)

    async def _split(self, payload: Any) -> ActionResult:
        t = self.table
        hand = self._actionable_hand()
        rnd = t.round
        if hand is None or rnd is None:
            return self._reject(Action.SPLIT, "No hand can act")
        if not hand.is_splittable_pair:
            return self._reject(Action.SPLIT, "Cannot split")
        if len(rnd.hands) >= self.rules.max_split_hands:
            return self._reject(Action.SPLIT, "Max split hands reached")
        if t.no_new_bets:
            return self._reject(Action.SPLIT, "No new bets this round")

        if t.bankroll < hand.wager:
            return self._funds_needed(
                Action.SPLIT,
                FundsReason.ACTION,
                needed=hand.wager,
                note="Add chips to SPLIT, or continue the hand.",
            )

        token = t.token
        index = rnd.active_hand_index
        hand.has_acted = True
        t.bankroll = max(ZERO, self._money(t.bankroll - hand.wager))

        first, second = hand.split()
        rnd.hands = [*rnd.hands[:index], first, second, *rnd.hands[index + 1:]]
        self.events.emit_new(
            EventType.PLAYER_SPLIT,
            hand_index=index,
            hand_count=len(rnd.hands),
            aces=first.is_ace_split,
        )
        self._labels()

        card = self._draw()
        await self._deal_card(card, Lane.PLAYER, first.cards)
        if self.is_stale(token):
            return ActionResult(Action.SPLIT, True)

        if first.is_ace_split and not first.is_pair_of_aces:
            first.is_done = True
            first.has_acted = True
            await self._advance(token)
            return ActionResult(Action.SPLIT, True)

        rnd.doubled_this_hand = False
        self._render()
        return ActionResult(Action.SPLIT, True)

    async def _surrender(self, payload: Any) -> ActionResult:
        t = self.table
        if not self.rules.surrender_allowed:
            return self._reject(Action.SURRENDER, "Surrender not allowed")
        hand = self._actionable_hand()
        if hand is None:
            return self._reject(Action.SURRENDER, "No hand can act")
        if hand.is_from_split or len(hand.cards) != 2 or hand.has_acted:
            return self._reject(Action.SURRENDER, "Can only surrender on first action")

        token = t.token
        refund = self._money(hand.wager / 2)
        t.bankroll = self._money(t.bankroll + refund)
        hand.is_surrendered = True
        hand.outcome = Outcome.LOSE
        hand.is_done = True
        hand.has_acted = True
        self.events.emit_new(EventType.PLAYER_SURRENDER, refund=refund)
        self._present("show_result", f"Surrender. Lose {format_money(hand.wager - refund)}")

        self.begin_settlement()
        await self._complete_round(token)
        return ActionResult(Action.SURRENDER, True)

    def _resolve_insurance(self, payload: Any) -> ActionResult:
        future = self._insurance_future
        if future is None or future.done():
            return self._reject(Action.INSURANCE_DECISION, "No insurance decision pending")
        amount = _payload_amount(payload, "amount")
        self._decision_open.clear()
        future.set_result(amount if amount is not None else ZERO)
        return ActionResult(Action.INSURANCE_DECISION, True)

    # ------------------------------------------------------------------
    # Round sequencing
    # ------------------------------------------------------------------

    async def _deal_opening(self, token: int) -> None:
        """Deal player, dealer up, player, dealer hole (face down)."""
        rnd = self.table.round
        if rnd is None:
            return
        hand = rnd.hands[0]
        dev = self.table.dev
        forced = dev.scenario is not DealScenario.NONE

        first = self._draw()
        await self._deal_card(first, Lane.PLAYER, hand.cards)
        if self.is_stale(token):
            return

        upcard = self._draw_specific(Card(Rank.ACE, Suit.SPADES)) if forced else self._draw()
        await self._deal_card(upcard, Lane.DEALER, rnd.dealer_cards)
        rnd.dealer_visible_count = 1
        if self.is_stale(token):
            return

        second = self._draw_matching(first) if dev.force_split_pairs else self._draw()
        await self._deal_card(second, Lane.PLAYER, hand.cards)
        if self.is_stale(token):
            return

        if dev.scenario is DealScenario.INSURANCE_DEALER_BJ:
            hole = self._draw_specific(Card(Rank.KING, Suit.HEARTS))
        elif dev.scenario is DealScenario.INSURANCE_NO_BJ:
            hole = self._draw_specific(Card(Rank.NINE, Suit.HEARTS))
        else:
            hole = self._draw()
        await self._deal_card(hole, Lane.DEALER, rnd.dealer_cards, reveal=False)
        self._labels()

    async def _insurance_and_peek(self, token: int) -> bool:
        """
        Offer insurance on an ace, peek on an ace or ten, pay naturals.

        Returns:
            True if the round ended here
        """
        t = self.table
        rnd = t.round
        if rnd is None:
            return True
        upcard = rnd.dealer_cards[0]
        first = rnd.hands[0]
        player_bj = first.is_blackjack

        if upcard.is_ace:
            self.offer_insurance()
            cap = floor_to_half_unit(min(first.wager / 2, t.bankroll))
            if cap > 0:
                chosen = await self._await_insurance(cap)
                if self.is_stale(token):
                    return True
                amount = floor_to_half_unit(max(ZERO, min(chosen, cap, t.bankroll)))
                if amount > 0:
                    rnd.insurance_wager = amount
                    t.bankroll = max(ZERO, self._money(t.bankroll - amount))
                    self.events.emit_new(EventType.INSURANCE_TAKEN, amount=amount)
                    self._labels()
                else:
                    self.events.emit_new(EventType.INSURANCE_DECLINED)
            else:
                self._present(
                    "notify_funds_insufficient",
                    FundsRequest(
                        reason=FundsReason.INSURANCE,
                        needed=floor_to_half_unit(first.wager / 2),
                        available=t.bankroll,
                        allow_continue=True,
                        note="Insurance needs chips; continuing without it.",
                    ),
                )
                self.events.emit_new(EventType.INSURANCE_DECLINED, reason="insufficient funds")

        if upcard.is_ace or upcard.is_ten_group:
            if is_blackjack(rnd.dealer_cards[:2]):
                await self._settle_dealer_blackjack(token, player_bj)
                return True
            if upcard.is_ace and rnd.insurance_wager > 0:
                lost = rnd.insurance_wager
                rnd.insurance_delta = -lost
                rnd.insurance_wager = ZERO
                self.events.emit_new(EventType.INSURANCE_LOSES, amount=lost)
                self._present("show_result", "You lose insurance!")
                self._labels()

        if player_bj:
            await self._settle_player_blackjack(token)
            return True
        return False

    async def _await_insurance(self, cap: Decimal) -> Decimal:
        """
        Suspend until the insurance decision arrives.

        The adapter's ``request_insurance`` and a dispatched INSURANCE_DECISION
        race; whichever answers first wins. A failing adapter counts as a decline.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._insurance_future = future
        self._insurance_offer = cap
        self.events.emit_new(EventType.INSURANCE_OFFERED, max_wager=cap)
        self._decision_open.set()
        self._broadcast(ActionInfo("INSURANCE_OFFERED", {"max_wager": cap}))

        prompt = asyncio.ensure_future(self.adapter.request_insurance(cap))
        try:
            await asyncio.wait({prompt, future}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            prompt.cancel()
            raise
        finally:
            self._decision_open.clear()
            self._insurance_future = None
            self._insurance_offer = None

        if future.done() and not future.cancelled():
            prompt.cancel()
            return to_money(future.result())

        future.cancel()
        try:
            return to_money(prompt.result())
        except Exception:
            logger.exception("Insurance prompt failed; treating as decline")
            return ZERO

    async def _advance(self, token: int) -> None:
        """Activate the next unfinished hand, or hand over to the dealer."""
        rnd = self.table.round
        if rnd is None:
            return
        while True:
            if self.is_stale(token):
                return
            previous = rnd.active_hand_index
            previous_done = rnd.active_hand is not None and rnd.active_hand.is_done
            index = next((i for i, h in enumerate(rnd.hands) if not h.is_done), None)
            if index is None:
                break

            if len(rnd.hands) > 1 and previous_done and index != previous:
                await self._animate("pause", self.rules.hand_advance_pause)
                if self.is_stale(token):
                    return

            rnd.active_hand_index = index
            rnd.doubled_this_hand = False
            hand = rnd.hands[index]

            if hand.needs_post_split_card:
                hand.needs_post_split_card = False
                card = self._draw()
                await self._deal_card(card, Lane.PLAYER, hand.cards)
                if self.is_stale(token):
                    return
                if hand.is_ace_split and len(hand.cards) == 2 and not hand.is_pair_of_aces:
                    hand.is_done = True
                    hand.has_acted = True
                    self._render()
                    continue

            self._render()
            return

        await self._dealer_play_and_settle(token)

    async def _dealer_play_and_settle(self, token: int) -> None:
        t = self.table
        rnd = t.round
        if rnd is None:
            return
        self.begin_dealer_turn()

        await self._reveal_hole_card()
        if self.is_stale(token):
            return

        hands = rnd.hands
        if all(h.is_busted for h in hands):
            # Every hand busted: dealer draws nothing.
            for h in hands:
                h.outcome = Outcome.LOSE
            self.begin_settlement()
            delta = t.bankroll - rnd.starting_bankroll
            if len(hands) > 1:
                self._present("show_result", self._breakdown(rnd))
            elif rnd.popup_override is None:
                self._present("show_result", f"Lose {format_money(delta)}")
            await self._complete_round(token)
            return

        while True:
            total, soft = hand_total_detailed(rnd.dealer_cards)
            must_hit = total < 17 or (
                self.rules.dealer_hits_soft_17 and total == 17 and soft
            )
            if not must_hit:
                break
            shown = len(rnd.dealer_cards)
            card = self._draw()
            rnd.dealer_visible_count = shown
            self.events.emit_new(EventType.DEALER_HITS, card=str(card))
            await self._deal_card(card, Lane.DEALER, rnd.dealer_cards)
            if self.is_stale(token):
                return
            rnd.dealer_visible_count = len(rnd.dealer_cards)
            self._labels()

        self.begin_settlement()
        for h in hands:
            h.outcome = evaluate_hand(h, rnd.dealer_cards)
        for h in hands:
            t.bankroll = self._money(t.bankroll + hand_return(h))
        self._labels()

        delta = t.bankroll - rnd.starting_bankroll
        dealer_value = hand_total(rnd.dealer_cards)
        if len(hands) > 1:
            self._present("show_result", self._breakdown(rnd))
        elif dealer_value > 21 and delta > 0:
            rnd.popup_override = PopupOverride.DEALER_BUST
            self._present("show_result", f"Dealer busts! Win {format_money(delta)}")
        elif rnd.popup_override is PopupOverride.PLAYER_BUST and delta < 0:
            pass  # the immediate bust message already covered it
        else:
            self._present("show_result", f"{_delta_label(delta)} {format_money(delta)}")

        await self._complete_round(token)

    async def _settle_dealer_blackjack(self, token: int, player_bj: bool) -> None:
        t = self.table
        rnd = t.round
        if rnd is None:
            return
        self.events.emit_new(EventType.DEALER_BLACKJACK)
        self.begin_settlement()
        await self._reveal_hole_card()
        if self.is_stale(token):
            return

        if rnd.insurance_wager > 0:
            stake = rnd.insurance_wager
            t.bankroll = self._money(t.bankroll + stake * 3)
            rnd.insurance_delta = stake * 2
            rnd.insurance_wager = ZERO
            self.events.emit_new(EventType.INSURANCE_WINS, amount=stake * 2)
            self._present(
                "show_result", f"You won insurance! You win {format_money(stake * 2)}"
            )

        first = rnd.hands[0]
        first.is_done = True
        if player_bj:
            first.outcome = Outcome.PUSH
            t.bankroll = self._money(t.bankroll + first.wager)
        else:
            first.outcome = Outcome.LOSE
        self._labels()

        delta = t.bankroll - rnd.starting_bankroll
        label = "Win" if delta > 0 else "Lose" if delta < 0 else "Push"
        self._present("show_result", f"{label} {format_money(delta)}")
        await self._complete_round(token)

    async def _settle_player_blackjack(self, token: int) -> None:
        t = self.table
        rnd = t.round
        if rnd is None:
            return
        first = rnd.hands[0]
        self.begin_settlement()

        t.bankroll = self._money(t.bankroll + blackjack_return(first.wager))
        first.outcome = Outcome.BLACKJACK
        first.is_done = True
        self.events.emit_new(EventType.PLAYER_BLACKJACK, wager=first.wager)
        self._labels()

        delta = t.bankroll - rnd.starting_bankroll
        self._present("show_result", f"Blackjack! You win {format_money(delta)}")
        await self._complete_round(token)

    async def _complete_round(self, token: int) -> None:
        """Mark the round over, report it, then finalize and cycle results."""
        if self.is_stale(token):
            return
        t = self.table
        rnd = t.round
        if rnd is None:
            return
        for h in rnd.hands:
            h.is_done = True
        t.in_round = False
        self.finish_round()

        delta = t.bankroll - rnd.starting_bankroll
        summary = RoundSummary(
            bankroll_after=t.bankroll,
            delta=delta,
            round_token=token,
            outcomes=tuple(h.outcome for h in rnd.hands),
        )
        self.events.emit_new(
            EventType.ROUND_SETTLED,
            token=token,
            bankroll_after=t.bankroll,
            delta=delta,
        )
        logger.info("Round %d settled: delta %s, bankroll %s", token, delta, t.bankroll)
        self._present("round_settled", summary)

        if t.bankroll <= 0:
            self._present(
                "notify_funds_insufficient",
                FundsRequest(
                    reason=FundsReason.BROKE,
                    needed=to_money(self.rules.min_bet),
                    available=t.bankroll,
                    allow_continue=False,
                    note="You're out of money.",
                ),
            )

        self.finalize_round(token)
        self._spawn(self._cycle_results(token))

    async def _cycle_results(self, token: int) -> None:
        """Highlight each settled hand in turn until a newer round starts."""
        self.finalize_round(token)
        rnd = self.table.round
        if rnd is None:
            return
        for index, hand in enumerate(list(rnd.hands)):
            if self.is_stale(token):
                return
            rnd.active_hand_index = index
            self._render()
            self._present("highlight_outcome", index, hand.outcome)
            await self._animate("pause", self.rules.result_cycle_pause)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _on_game_over(self) -> None:
        t = self.table
        t.token += 1
        t.in_round = False
        if self._insurance_future is not None and not self._insurance_future.done():
            self._insurance_future.set_result(ZERO)
        self.events.emit_new(EventType.GAME_ENDED, bankroll=t.bankroll)
        logger.info("Game over with bankroll %s", t.bankroll)
        self._broadcast(ActionInfo("END_GAME"))

    def _actionable_hand(self) -> Hand | None:
        t = self.table
        if self.phase is not RoundPhase.PLAYER_TURN or not t.in_round or t.round is None:
            return None
        hand = t.round.active_hand
        if hand is None or hand.is_done:
            return None
        return hand

    def _active_index(self) -> int:
        rnd = self.table.round
        return rnd.active_hand_index if rnd is not None else 0

    def _bust(self, hand: Hand) -> None:
        rnd = self.table.round
        hand.outcome = Outcome.LOSE
        hand.is_done = True
        self.events.emit_new(EventType.PLAYER_BUSTS, hand_index=self._active_index())
        if rnd is not None and len(rnd.hands) == 1:
            rnd.popup_override = PopupOverride.PLAYER_BUST
            self._present("show_result", f"Bust! Lose {format_money(hand.wager)}")

    def _funds_needed(
        self,
        action: Action,
        reason: FundsReason,
        needed: Decimal,
        note: str,
        allow_continue: bool = True,
    ) -> ActionResult:
        t = self.table
        token = t.token

        async def retry() -> ActionResult | None:
            if reason is not FundsReason.BANKROLL and (self.is_stale(token) or not t.in_round):
                return None
            return await self.dispatch(action)

        def decline() -> None:
            if reason is FundsReason.ACTION and not self.is_stale(token) and t.in_round:
                t.no_new_bets = True
                self._render()

        request = FundsRequest(
            reason=reason,
            needed=needed,
            available=t.bankroll,
            allow_continue=allow_continue,
            action=action.value,
            note=note,
            retry=retry,
            decline=decline,
        )
        self.events.emit_new(
            EventType.INSUFFICIENT_FUNDS,
            action=action.value,
            required=needed,
            available=t.bankroll,
        )
        self._present("notify_funds_insufficient", request)
        return ActionResult(action, False, "Insufficient funds", funds_needed=True)

    def _reject(self, action: Action, reason: str) -> ActionResult:
        logger.debug("%s rejected in %s: %s", action.value, self.phase.value, reason)
        return ActionResult(action, False, reason)

    def _breakdown(self, rnd: Round) -> ResultBreakdown:
        return ResultBreakdown(
            dealer_total=hand_total(rnd.dealer_cards),
            hands=tuple(
                HandResult(
                    index=i,
                    outcome=h.outcome,
                    total=h.value,
                    wager=h.wager,
                    delta=hand_delta(h),
                    surrendered=h.is_surrendered,
                )
                for i, h in enumerate(rnd.hands)
            ),
            insurance_delta=rnd.insurance_delta,
            round_delta=self.table.bankroll - rnd.starting_bankroll,
        )

    def _availability(self) -> Availability:
        t = self.table
        rnd = t.round
        can_deal = (
            not t.in_round
            and self.phase is RoundPhase.IDLE
            and t.bankroll >= to_money(self.rules.min_bet)
        )
        hand = self._actionable_hand()
        if hand is None or rnd is None or self.awaiting_insurance:
            return Availability(can_deal=can_deal, can_insure=self.awaiting_insurance)

        two_cards = len(hand.cards) == 2
        return Availability(
            can_deal=False,
            can_hit=True,
            can_stand=True,
            can_double=two_cards
            and not hand.is_doubled
            and not rnd.doubled_this_hand
            and not t.no_new_bets,
            can_split=hand.is_splittable_pair
            and len(rnd.hands) < self.rules.max_split_hands
            and not t.no_new_bets,
            can_surrender=self.rules.surrender_allowed
            and two_cards
            and not hand.is_from_split
            and not hand.has_acted,
        )

    # Shoe access

    def _new_shoe(self) -> None:
        self.shoe.new_shuffled_shoe()
        self._sync_shoe()

    def _sync_shoe(self) -> bool:
        """Emit new-shoe notifications if the shoe rebuilt itself."""
        if self.shoe.shoe_id == self._known_shoe_id:
            return False
        self._known_shoe_id = self.shoe.shoe_id
        self.table.shuffle_pending = False
        self._revealed_ids.clear()
        self.events.emit_new(
            EventType.SHOE_SHUFFLED,
            shoe_id=self.shoe.shoe_id,
            num_decks=self.shoe.num_decks,
        )
        audit = self.shoe.last_audit
        if not audit.ok:
            self.events.emit_new(
                EventType.SHOE_INTEGRITY_FAILED,
                shoe_id=self.shoe.shoe_id,
                issues=list(audit.issues),
            )
        return True

    def _after_draw(self, result: DrawResult) -> Card:
        self._sync_shoe()
        if result.shuffle_pending and not self.table.shuffle_pending:
            self.table.shuffle_pending = True
            self.events.emit_new(EventType.SHUFFLE_PENDING, shoe_id=self.shoe.shoe_id)
        return result.card

    def _draw(self) -> Card:
        return self._after_draw(self.shoe.draw(in_round=self.table.in_round))

    def _draw_specific(self, target: Card) -> Card:
        return self._after_draw(self.shoe.draw_specific(target, in_round=self.table.in_round))

    def _draw_matching(self, first: Card) -> Card:
        return self._after_draw(self.shoe.draw_matching(first, in_round=self.table.in_round))

    # Presentation

    async def _deal_card(
        self,
        card: Card,
        lane: Lane,
        target: list[Card],
        reveal: bool = True,
    ) -> None:
        target.append(card)
        self._render()
        await self._animate("animate_dealt_card", lane, reveal)
        if reveal:
            self._reveal(card)

    async def _reveal_hole_card(self) -> None:
        rnd = self.table.round
        if rnd is None:
            return
        rnd.dealer_visible_count = 1
        self._render()
        await self._animate("animate_hole_card_reveal")
        rnd.hole_card_hidden = False
        if len(rnd.dealer_cards) > 1:
            self._reveal(rnd.dealer_cards[1])
            self.events.emit_new(EventType.DEALER_REVEALS, card=str(rnd.dealer_cards[1]))
        rnd.dealer_visible_count = len(rnd.dealer_cards)
        self._labels()

    def _reveal(self, card: Card) -> None:
        """Emit a reveal notification once per physical card."""
        if not card.card_id or card.card_id in self._revealed_ids:
            return
        self._revealed_ids.add(card.card_id)
        self.events.emit_new(
            EventType.CARD_REVEALED,
            card_id=card.card_id,
            rank=str(card.rank),
        )

    async def _animate(self, capability: str, *args: Any) -> None:
        try:
            await getattr(self.adapter, capability)(*args)
        except Exception:
            logger.exception("Adapter %s failed; treating as complete", capability)

    def _present(self, capability: str, *args: Any) -> None:
        try:
            getattr(self.adapter, capability)(*args)
        except Exception:
            logger.exception("Adapter %s failed", capability)

    def _render(self) -> None:
        self._present("render_hands", self.snapshot())

    def _labels(self) -> None:
        snapshot = self.snapshot()
        self._present("update_labels", snapshot)
        self._present("refresh_action_amount", snapshot.chips_in_action)

    def _money(self, amount: Decimal) -> Decimal:
        return to_money(self.adapter.round_money(amount))

    def _broadcast(self, info: ActionInfo) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot, info)
            except Exception:
                logger.exception("Snapshot listener failed for %s", info.type)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("Deferred continuation failed", exc_info=finished.exception())

        task.add_done_callback(done)


def _payload_amount(payload: Any, key: str) -> Decimal | None:
    """Pull an amount from a bare number or a ``{key: amount}`` mapping."""
    if payload is None:
        return None
    if isinstance(payload, dict):
        payload = payload.get(key)
        if payload is None:
            return None
    return to_money(payload)


def _delta_label(delta: Decimal) -> str:
    if delta > 0:
        return "Win"
    if delta < 0:
        return "Lose"
    return "Push"
