"""Tests for the round engine over stacked shoes."""

import asyncio
from decimal import Decimal

import pytest
from transitions import MachineError

from bjcore.adapter import FundsReason, ResultBreakdown, SilentAdapter
from bjcore.counting import KOCounter
from bjcore.engine import ActionInfo, RoundEngine
from bjcore.errors import AdapterConfigurationError, UnknownActionError
from bjcore.events import EventType
from bjcore.hand import Outcome
from bjcore.rules import RuleSet
from bjcore.state import Action, RoundPhase

WIN_20_VS_17 = ["10S", "9H", "QS", "8D"]
INSURANCE_DEALER_BJ = ["10S", "AH", "9S", "KD"]
INSURANCE_NO_BJ = ["10S", "AH", "9S", "8D"]


class PromptAdapter(SilentAdapter):
    """Adapter whose insurance prompt never answers on its own."""

    def __init__(self):
        self.summaries = []

    async def request_insurance(self, max_wager):
        await asyncio.Event().wait()

    def round_settled(self, summary):
        self.summaries.append(summary)


class GatedCycleAdapter(SilentAdapter):
    """Adapter whose result-cycling pause waits until the test opens a gate."""

    def __init__(self):
        self.highlights = []
        self.cycling = asyncio.Event()
        self.gate = asyncio.Event()

    def highlight_outcome(self, hand_index, outcome):
        self.highlights.append((hand_index, outcome))

    async def pause(self, seconds):
        if self.highlights and not self.cycling.is_set():
            self.cycling.set()
            await self.gate.wait()


class BareAdapter:
    """Host that can only render."""

    def render_hands(self, snapshot):
        pass


def events_of(engine: RoundEngine, event_type: EventType):
    return [e for e in engine.events.history if e.event_type is event_type]


class TestSettlement:
    """Single-hand rounds from deal to payout."""

    @pytest.mark.asyncio
    async def test_stand_and_win(self, make_table):
        engine = make_table(WIN_20_VS_17)
        result = await engine.dispatch(Action.START_ROUND)
        assert result.accepted
        assert engine.phase is RoundPhase.PLAYER_TURN
        assert engine.bankroll == Decimal("990")

        await engine.dispatch(Action.STAND)
        await engine.drain()

        assert engine.phase is RoundPhase.IDLE
        assert not engine.in_round
        assert engine.bankroll == Decimal("1010")
        assert engine.adapter.results == ["Win $10"]
        assert engine.adapter.summaries[-1].delta == Decimal("10")
        assert engine.adapter.highlights == [(0, Outcome.WIN)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "faces,message,bankroll",
        [
            (["10S", "10H", "7S", "9D"], "Lose $10", "990"),
            (["10S", "10H", "QS", "KD"], "Push $0", "1000"),
        ],
    )
    async def test_stand_outcomes(self, make_table, faces, message, bankroll):
        engine = make_table(faces)
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.STAND)
        await engine.drain()
        assert engine.adapter.results == [message]
        assert engine.bankroll == Decimal(bankroll)

    @pytest.mark.asyncio
    async def test_hole_card_hidden_during_play(self, make_table):
        engine = make_table(WIN_20_VS_17)
        await engine.dispatch(Action.START_ROUND)
        snapshot = engine.snapshot()
        assert snapshot.hole_card_hidden
        assert snapshot.dealer_cards[1] is None
        assert snapshot.dealer_total == 9
        assert snapshot.chips_in_action == Decimal("10")
        assert snapshot.available.can_hit and snapshot.available.can_double

    @pytest.mark.asyncio
    async def test_player_blackjack_pays_three_to_two(self, make_table):
        engine = make_table(["AS", "9H", "KS", "7D"])
        await engine.dispatch(Action.START_ROUND)
        await engine.drain()

        assert engine.phase is RoundPhase.IDLE
        assert engine.bankroll == Decimal("1015")
        assert engine.adapter.results == ["Blackjack! You win $15"]
        assert engine.adapter.summaries[-1].outcomes == (Outcome.BLACKJACK,)

    @pytest.mark.asyncio
    async def test_blackjack_pays_whole_units(self, make_table):
        engine = make_table(["AS", "9H", "KS", "7D"], wager=5)
        await engine.dispatch(Action.START_ROUND)
        await engine.drain()
        assert engine.bankroll == Decimal("1007")

    @pytest.mark.asyncio
    async def test_dealer_blackjack_on_ten_peek(self, make_table):
        engine = make_table(["10S", "KH", "9S", "AD"])
        await engine.dispatch(Action.START_ROUND)
        await engine.drain()

        assert engine.adapter.insurance_offers == []
        assert engine.adapter.results == ["Lose $10"]
        assert engine.bankroll == Decimal("990")
        assert events_of(engine, EventType.DEALER_BLACKJACK)

    @pytest.mark.asyncio
    async def test_both_blackjack_push(self, make_table):
        engine = make_table(["AS", "KH", "QS", "AD"])
        await engine.dispatch(Action.START_ROUND)
        await engine.drain()
        assert engine.bankroll == Decimal("1000")
        assert engine.adapter.summaries[-1].outcomes == (Outcome.PUSH,)

    @pytest.mark.asyncio
    async def test_bust_shows_message_once(self, make_table):
        engine = make_table(["10S", "9H", "6S", "8D", "KC"])
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.HIT)
        await engine.drain()

        assert engine.adapter.results == ["Bust! Lose $10"]
        assert engine.bankroll == Decimal("990")
        snapshot = engine.snapshot()
        # Dealer draws nothing once every hand has busted.
        assert len(snapshot.dealer_cards) == 2
        assert not snapshot.hole_card_hidden

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hits_soft_17,outcome", [(True, Outcome.LOSE), (False, Outcome.WIN)])
    async def test_dealer_soft_17(self, make_table, hits_soft_17, outcome):
        engine = make_table(["10S", "AH", "8S", "6D", "2C"], dealer_hits_soft_17=hits_soft_17)
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.STAND)
        await engine.drain()
        assert engine.adapter.summaries[-1].outcomes == (outcome,)

    @pytest.mark.asyncio
    async def test_double_and_dealer_bust(self, make_table):
        engine = make_table(["6S", "5H", "5S", "10D", "10C", "QC"])
        await engine.dispatch(Action.START_ROUND)
        result = await engine.dispatch(Action.DOUBLE)
        await engine.drain()

        assert result.accepted
        assert engine.bankroll == Decimal("1020")
        assert engine.adapter.results == ["Dealer busts! Win $20"]
        assert events_of(engine, EventType.PLAYER_DOUBLE)[0].data["new_wager"] == Decimal("20")

    @pytest.mark.asyncio
    async def test_double_needs_two_cards(self, make_table):
        engine = make_table(["2S", "9H", "3S", "8D", "4C"])
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.HIT)
        result = await engine.dispatch(Action.DOUBLE)
        assert not result.accepted
        assert result.reason == "Can only double on two cards"


class TestSurrender:
    """Late surrender on the first two cards."""

    @pytest.mark.asyncio
    async def test_surrender_refunds_half(self, make_table):
        engine = make_table(["10S", "9H", "6S", "8D"], surrender_allowed=True)
        await engine.dispatch(Action.START_ROUND)
        result = await engine.dispatch(Action.SURRENDER)
        await engine.drain()

        assert result.accepted
        assert engine.bankroll == Decimal("995")
        assert engine.adapter.results == ["Surrender. Lose $5"]
        assert engine.adapter.summaries[-1].delta == Decimal("-5")

    @pytest.mark.asyncio
    async def test_surrender_disabled(self, make_table):
        engine = make_table(["10S", "9H", "6S", "8D"])
        await engine.dispatch(Action.START_ROUND)
        result = await engine.dispatch(Action.SURRENDER)
        assert result.reason == "Surrender not allowed"

    @pytest.mark.asyncio
    async def test_surrender_after_hit_refused(self, make_table):
        engine = make_table(["10S", "9H", "2S", "8D", "3C"], surrender_allowed=True)
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.HIT)
        result = await engine.dispatch(Action.SURRENDER)
        assert result.reason == "Can only surrender on first action"


class TestSplit:
    """Splitting pairs into multiple hands."""

    @pytest.mark.asyncio
    async def test_split_eights(self, make_table):
        engine = make_table(["8S", "5H", "8H", "10D", "3C", "KC", "9C"])
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.SPLIT)

        snapshot = engine.snapshot()
        assert len(snapshot.hands) == 2
        assert snapshot.active_hand_index == 0
        assert snapshot.hands[0].total == 11
        assert snapshot.hands[1].needs_post_split_card
        assert engine.bankroll == Decimal("980")

        await engine.dispatch(Action.STAND)
        assert engine.snapshot().active_hand_index == 1
        assert engine.snapshot().hands[1].total == 18
        assert ("pause", (0,)) in engine.adapter.calls

        await engine.dispatch(Action.STAND)
        await engine.drain()

        assert engine.bankroll == Decimal("1020")
        breakdown = engine.adapter.results[-1]
        assert isinstance(breakdown, ResultBreakdown)
        assert breakdown.dealer_total == 24
        assert [h.outcome for h in breakdown.hands] == [Outcome.WIN, Outcome.WIN]
        assert breakdown.round_delta == Decimal("20")
        assert engine.adapter.highlights == [(0, Outcome.WIN), (1, Outcome.WIN)]

    @pytest.mark.asyncio
    async def test_split_hands_settle_independently(self, make_table):
        engine = make_table(["8S", "5H", "8H", "10D", "6C", "KC", "10C", "2C"])
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.SPLIT)
        await engine.dispatch(Action.HIT)

        snapshot = engine.snapshot()
        assert snapshot.hands[0].total == 24
        assert snapshot.active_hand_index == 1
        assert engine.adapter.results == []

        await engine.dispatch(Action.STAND)
        await engine.drain()

        breakdown = engine.adapter.results[-1]
        assert isinstance(breakdown, ResultBreakdown)
        assert breakdown.dealer_total == 17
        assert [h.outcome for h in breakdown.hands] == [Outcome.LOSE, Outcome.WIN]
        assert [h.delta for h in breakdown.hands] == [Decimal("-10"), Decimal("10")]
        assert breakdown.round_delta == breakdown.hands_delta == Decimal("0")
        assert engine.bankroll == Decimal("1000")

    @pytest.mark.asyncio
    async def test_split_aces_get_one_card_each(self, make_table):
        engine = make_table(["AS", "6H", "AH", "10D", "KC", "9C", "QC"])
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.SPLIT)
        await engine.drain()

        assert engine.phase is RoundPhase.IDLE
        # 21 on a split ace is not a natural.
        assert engine.adapter.summaries[-1].outcomes == (Outcome.WIN, Outcome.WIN)
        assert engine.bankroll == Decimal("1020")

    @pytest.mark.asyncio
    async def test_aces_can_be_resplit(self, make_table):
        engine = make_table(["AS", "6H", "AH", "10D", "AC"])
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.SPLIT)
        snapshot = engine.snapshot()
        assert not snapshot.hands[0].is_done
        assert snapshot.available.can_split

    @pytest.mark.asyncio
    async def test_max_split_hands(self, make_table):
        engine = make_table(["8S", "5H", "8H", "10D", "8C"], max_split_hands=2)
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.SPLIT)
        result = await engine.dispatch(Action.SPLIT)
        assert result.reason == "Max split hands reached"

    @pytest.mark.asyncio
    async def test_mixed_tens_split(self, make_table):
        engine = make_table(["10S", "9H", "JS", "8D", "2C"])
        await engine.dispatch(Action.START_ROUND)
        assert (await engine.dispatch(Action.SPLIT)).accepted

    @pytest.mark.asyncio
    async def test_split_needs_pair(self, make_table):
        engine = make_table(["10S", "9H", "9S", "8D"])
        await engine.dispatch(Action.START_ROUND)
        assert (await engine.dispatch(Action.SPLIT)).reason == "Cannot split"


class TestInsurance:
    """Insurance offer, peek and payout."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stake", [5, 50])
    async def test_insurance_wins_against_dealer_blackjack(self, make_table, recording, stake):
        engine = make_table(INSURANCE_DEALER_BJ, adapter=recording(insurance=stake))
        await engine.dispatch(Action.START_ROUND)
        await engine.drain()

        assert engine.adapter.insurance_offers == [Decimal("5")]
        assert engine.adapter.results == ["You won insurance! You win $10", "Push $0"]
        assert engine.bankroll == Decimal("1000")
        assert events_of(engine, EventType.INSURANCE_WINS)[0].data["amount"] == Decimal("10")

    @pytest.mark.asyncio
    async def test_insurance_lost_then_play_continues(self, make_table, recording):
        engine = make_table(INSURANCE_NO_BJ, adapter=recording(insurance=5))
        await engine.dispatch(Action.START_ROUND)
        assert engine.phase is RoundPhase.PLAYER_TURN
        assert engine.bankroll == Decimal("985")

        await engine.dispatch(Action.STAND)
        await engine.drain()

        assert engine.adapter.results == ["You lose insurance!", "Lose $5"]
        assert engine.bankroll == Decimal("995")

    @pytest.mark.asyncio
    async def test_player_natural_against_ace_without_dealer_blackjack(
        self, make_table, recording
    ):
        engine = make_table(["AS", "AH", "KS", "9D"], adapter=recording(insurance=5))
        await engine.dispatch(Action.START_ROUND)
        await engine.drain()

        assert engine.adapter.results == ["You lose insurance!", "Blackjack! You win $10"]
        assert engine.bankroll == Decimal("1010")
        assert engine.adapter.summaries[-1].outcomes == (Outcome.BLACKJACK,)
        assert len(engine.table.round.dealer_cards) == 2
        assert not events_of(engine, EventType.DEALER_HITS)
        assert events_of(engine, EventType.INSURANCE_LOSES)[0].data["amount"] == Decimal("5")

    @pytest.mark.asyncio
    async def test_declined_insurance(self, make_table):
        engine = make_table(INSURANCE_NO_BJ)
        await engine.dispatch(Action.START_ROUND)
        assert engine.bankroll == Decimal("990")
        assert events_of(engine, EventType.INSURANCE_DECLINED)

    @pytest.mark.asyncio
    async def test_no_chips_for_insurance(self, make_table):
        engine = make_table(INSURANCE_NO_BJ, bankroll=10)
        await engine.dispatch(Action.START_ROUND)

        assert engine.adapter.insurance_offers == []
        assert engine.adapter.funds[0].reason is FundsReason.INSURANCE
        assert engine.phase is RoundPhase.PLAYER_TURN

    @pytest.mark.asyncio
    async def test_dispatched_decision_resumes_round(self, make_table):
        engine = make_table(INSURANCE_DEALER_BJ, adapter=PromptAdapter())
        task = asyncio.create_task(engine.dispatch(Action.START_ROUND))
        await engine.wait_for_decision()

        snapshot = engine.snapshot()
        assert snapshot.phase is RoundPhase.INSURANCE
        assert snapshot.insurance_offer == Decimal("5")
        assert snapshot.available.can_insure
        assert snapshot.dealer_cards[1] is None

        decision = await engine.dispatch(Action.INSURANCE_DECISION, {"amount": 5})
        assert decision.accepted
        assert (await task).accepted
        await engine.drain()
        assert engine.bankroll == Decimal("1000")

    @pytest.mark.asyncio
    async def test_decision_without_offer_rejected(self, engine):
        result = await engine.dispatch(Action.INSURANCE_DECISION, 5)
        assert result.reason == "No insurance decision pending"


class TestFunds:
    """Blocking funds prompts and retries."""

    @pytest.mark.asyncio
    async def test_bankroll_below_minimum(self, make_table):
        engine = make_table(WIN_20_VS_17, bankroll=3)
        result = await engine.dispatch(Action.START_ROUND)

        assert result.funds_needed
        assert engine.table.token == 0
        request = engine.adapter.funds[-1]
        assert request.reason is FundsReason.BANKROLL
        assert not request.allow_continue

        engine.add_funds(7)
        retried = await request.retry()
        assert retried.accepted
        assert engine.in_round

    @pytest.mark.asyncio
    async def test_double_retry_after_deposit(self, make_table):
        engine = make_table(["6S", "5H", "5S", "10D", "10C", "QC"], bankroll=15)
        await engine.dispatch(Action.START_ROUND)
        result = await engine.dispatch(Action.DOUBLE)

        assert result.funds_needed
        request = engine.adapter.funds[-1]
        assert request.reason is FundsReason.ACTION
        assert request.needed == Decimal("10")
        assert request.available == Decimal("5")

        assert engine.add_funds(10) == Decimal("15")
        retried = await request.retry()
        await engine.drain()
        assert retried.accepted
        assert engine.bankroll == Decimal("45")

    @pytest.mark.asyncio
    async def test_decline_blocks_new_bets(self, make_table):
        engine = make_table(["6S", "5H", "5S", "10D", "10C", "QC"], bankroll=15)
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.DOUBLE)

        engine.decline_funds(engine.adapter.funds[-1])
        snapshot = engine.snapshot()
        assert snapshot.no_new_bets
        assert not snapshot.available.can_double
        assert (await engine.dispatch(Action.DOUBLE)).reason == "No new bets this round"

    @pytest.mark.asyncio
    async def test_broke_after_loss(self, make_table):
        engine = make_table(["10S", "10H", "7S", "9D"], bankroll=10)
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.STAND)
        await engine.drain()
        assert engine.bankroll == Decimal("0")
        assert engine.adapter.funds[-1].reason is FundsReason.BROKE

    def test_add_funds_rounds_down_to_half(self, engine):
        assert engine.add_funds("2.75") == Decimal("1002.50")
        assert events_of(engine, EventType.FUNDS_ADDED)[0].data["amount"] == Decimal("2.5")


class TestWager:
    """Wager normalization at round start."""

    @pytest.mark.asyncio
    async def test_wager_floors_to_unit(self, make_table):
        engine = make_table(WIN_20_VS_17)
        await engine.dispatch(Action.START_ROUND, {"wager": 23})
        assert engine.table.wager == Decimal("20")
        assert engine.bankroll == Decimal("980")

    @pytest.mark.asyncio
    async def test_wager_clamped_to_bankroll(self, make_table):
        engine = make_table(WIN_20_VS_17, bankroll=12, wager=50)
        await engine.dispatch(Action.START_ROUND)
        assert engine.table.wager == Decimal("10")
        assert engine.bankroll == Decimal("2")

    @pytest.mark.asyncio
    async def test_set_wager_refused_mid_round(self, make_table):
        engine = make_table(WIN_20_VS_17)
        assert engine.set_wager(25)
        await engine.dispatch(Action.START_ROUND)
        assert not engine.set_wager(5)
        assert engine.table.wager == Decimal("25")


class TestDispatchContract:
    """Action validation and round-token staleness."""

    @pytest.mark.asyncio
    async def test_unknown_action(self, engine):
        with pytest.raises(UnknownActionError):
            await engine.dispatch("FOLD")

    @pytest.mark.asyncio
    async def test_missing_capability_raises_before_mutation(self):
        engine = RoundEngine(
            adapter=BareAdapter(),
            rules=RuleSet(hand_advance_pause=0, result_cycle_pause=0),
        )
        with pytest.raises(AdapterConfigurationError) as exc_info:
            await engine.dispatch(Action.START_ROUND)

        assert "request_insurance" in exc_info.value.missing
        assert engine.table.token == 0
        assert engine.bankroll == Decimal("1000")
        assert engine.shoe.discard_count == 0
        assert engine.phase is RoundPhase.IDLE

        result = await engine.dispatch(Action.NEW_SHOE)
        assert result.accepted
        assert engine.shoe.shoe_id == 2

    @pytest.mark.asyncio
    async def test_start_round_twice_rejected(self, make_table):
        engine = make_table(WIN_20_VS_17)
        await engine.dispatch(Action.START_ROUND)
        result = await engine.dispatch(Action.START_ROUND)
        assert result.reason == "Round already in progress"
        assert (await engine.dispatch(Action.NEW_SHOE)).reason == "Cannot change shoes mid-round"

    @pytest.mark.asyncio
    async def test_actions_outside_round_rejected(self, engine):
        assert (await engine.dispatch(Action.HIT)).reason == "No hand can act"
        assert (await engine.dispatch("STAND")).reason == "No hand can act"

    @pytest.mark.asyncio
    async def test_end_game_makes_suspended_round_stale(self, make_table):
        engine = make_table(INSURANCE_DEALER_BJ, adapter=PromptAdapter())
        task = asyncio.create_task(engine.dispatch(Action.START_ROUND))
        await engine.wait_for_decision()
        token = engine.table.token

        engine.end_game()
        await task

        assert engine.is_stale(token)
        assert engine.phase is RoundPhase.GAME_OVER
        assert engine.snapshot().game_over
        assert engine.adapter.summaries == []
        assert events_of(engine, EventType.GAME_ENDED)
        assert (await engine.dispatch(Action.START_ROUND)).reason == "Game is over"
        assert engine.add_funds(100) == engine.bankroll

    def test_phase_changes_follow_transition_table(self, make_table):
        engine = make_table([])
        triggers = set(engine.machine.get_triggers(RoundPhase.IDLE.value))
        assert triggers == {"begin_deal", "end_game"}
        assert set(engine.machine.get_triggers(RoundPhase.SETTLING.value)) == {
            "finish_round",
            "end_game",
        }
        with pytest.raises(MachineError):
            engine.begin_play()
        assert engine.phase is RoundPhase.IDLE

    @pytest.mark.asyncio
    async def test_new_round_abandons_previous_result_cycle(self, make_table):
        adapter = GatedCycleAdapter()
        engine = make_table(
            ["8S", "5H", "8H", "10D", "3C", "KC", "9C", "5S", "7H", "6S", "JD"],
            adapter=adapter,
        )
        await engine.dispatch(Action.START_ROUND)
        await engine.dispatch(Action.SPLIT)
        await engine.dispatch(Action.STAND)
        await engine.dispatch(Action.STAND)
        await adapter.cycling.wait()
        assert adapter.highlights == [(0, Outcome.WIN)]

        assert (await engine.dispatch(Action.START_ROUND)).accepted
        adapter.gate.set()
        await engine.drain()

        assert adapter.highlights == [(0, Outcome.WIN)]
        snapshot = engine.snapshot()
        assert snapshot.phase is RoundPhase.PLAYER_TURN
        assert len(snapshot.hands) == 1
        assert snapshot.active_hand_index == 0
        assert snapshot.hands[0].total == 11

    @pytest.mark.asyncio
    async def test_finalize_round_runs_once(self, make_table):
        engine = make_table(WIN_20_VS_17)
        await engine.dispatch(Action.START_ROUND)
        assert not engine.finalize_round()
        await engine.dispatch(Action.STAND)
        await engine.drain()
        assert not engine.finalize_round()
        assert engine.table.finalized_token == engine.table.token


class TestShoeIntegration:
    """Cut marker handling across rounds."""

    @pytest.mark.asyncio
    async def test_cut_mid_round_shuffles_before_next_round(self, make_table):
        engine = make_table([])
        for _ in range(37):
            engine.shoe.draw()

        await engine.dispatch(Action.START_ROUND)
        if engine.in_round:
            await engine.dispatch(Action.STAND)
        await engine.drain()

        assert engine.snapshot().shuffle_pending
        assert engine.shoe.shoe_id == 1
        assert len(events_of(engine, EventType.SHUFFLE_PENDING)) == 1

        await engine.dispatch(Action.START_ROUND)
        assert engine.shoe.shoe_id == 2
        assert not engine.snapshot().shuffle_pending
        assert len(events_of(engine, EventType.SHOE_SHUFFLED)) == 2

    @pytest.mark.asyncio
    async def test_running_count_skips_hole_card_until_reveal(self, make_table):
        engine = make_table(["5S", "7H", "6S", "KD"])
        counter = KOCounter(num_decks=1)
        counter.attach(engine.events)

        await engine.dispatch(Action.START_ROUND)
        assert counter.running_count == 3

        await engine.dispatch(Action.STAND)
        await engine.drain()
        assert counter.running_count == 2
        assert counter.cards_seen == 4

    @pytest.mark.asyncio
    async def test_cut_policy_change(self, engine):
        policy = engine.set_cut_policy(random_placement=False, penetration_percent=82)
        assert policy.penetration_percent == 80
        assert engine.snapshot().shoe.penetration_percent == 80


class TestSubscribe:
    """Snapshot broadcasts."""

    @pytest.mark.asyncio
    async def test_subscribe_gets_immediate_snapshot(self, make_table):
        engine = make_table(WIN_20_VS_17)
        seen: list[ActionInfo] = []
        unsubscribe = engine.subscribe(lambda snapshot, info: seen.append(info))
        assert seen == [ActionInfo("SUBSCRIBE_INIT")]

        await engine.dispatch(Action.START_ROUND)
        assert seen[-1] == ActionInfo("START_ROUND", None)

        unsubscribe()
        await engine.dispatch(Action.STAND)
        assert seen[-1].type == "START_ROUND"
        await engine.drain()

    def test_failing_listener_is_isolated(self, engine):
        def broken(snapshot, info):
            raise RuntimeError("boom")

        engine.subscribe(broken)
        engine.add_funds(5)
        assert engine.bankroll == Decimal("1005")
