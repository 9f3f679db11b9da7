"""Headless table host: the adapter and per-session table registry used by the API."""

import asyncio
import logging
import time
from decimal import Decimal
from random import Random
from typing import Any, Awaitable

from bjcore.adapter import FundsReason, FundsRequest, ResultBreakdown, RoundSummary, SilentAdapter
from bjcore.counting import KOCounter
from bjcore.engine import ActionResult, RoundEngine
from bjcore.events import EventType, GameEvent
from bjcore.ledger import BankrollLedger
from bjcore.rules import RuleSet
from bjcore.shoe import CutPolicy
from bjcore.state import Action
from api.session import get_session, update_session
from config import TableConfig, config

logger = logging.getLogger(__name__)

# Session data keys
SESSION_KEY_LEDGER = "ledger"
SESSION_KEY_CREATED_AT = "created_at"
SESSION_KEY_LAST_ACTIVITY = "last_activity"


class HeadlessAdapter(SilentAdapter):
    """
    Adapter for hosts with no animation layer.

    Animations and pauses complete at once. The insurance prompt never
    answers on its own; the decision arrives as an INSURANCE_DECISION action.
    Results and funds prompts are queued for the next response.
    """

    def __init__(self) -> None:
        self.results: list[str | ResultBreakdown] = []
        self.pending_funds: FundsRequest | None = None
        self.last_summary: RoundSummary | None = None

    async def request_insurance(self, max_wager: Decimal) -> Any:
        await asyncio.Event().wait()

    def notify_funds_insufficient(self, request: FundsRequest) -> None:
        self.pending_funds = request

    def show_result(self, result: str | ResultBreakdown) -> None:
        self.results.append(result)

    def round_settled(self, summary: RoundSummary) -> None:
        self.last_summary = summary

    def take_results(self) -> list[str | ResultBreakdown]:
        results, self.results = self.results, []
        return results


def rules_from_config(table: TableConfig) -> RuleSet:
    """Build the engine's rule set from environment configuration."""
    return RuleSet(
        num_decks=table.num_decks,
        min_bet=table.min_bet,
        bet_unit=table.bet_unit,
        dealer_hits_soft_17=table.dealer_hits_soft_17,
        surrender_allowed=table.surrender_allowed,
        max_split_hands=table.max_split_hands,
        hand_advance_pause=0,
        result_cycle_pause=0,
    )


class TableSession:
    """One table: engine, headless adapter, count observer and bankroll ledger."""

    def __init__(
        self,
        session_id: str,
        save: dict[str, Any] | None = None,
        table_config: TableConfig | None = None,
        rng: Random | None = None,
    ) -> None:
        table = table_config or config.table
        self.session_id = session_id
        self.created_at = int(time.time())

        self.ledger = BankrollLedger(max_hands=table.ledger_max_hands)
        restored = self.ledger.init_from_save(save) if save else False
        bankroll = self.ledger.bankroll if restored and self.ledger.bankroll is not None else None
        if bankroll is None:
            bankroll = table.starting_bankroll
            self.ledger.set_bankroll(bankroll)

        self.adapter = HeadlessAdapter()
        rules = rules_from_config(table)
        self.engine = RoundEngine(
            adapter=self.adapter,
            rules=rules,
            bankroll=bankroll,
            wager=table.default_wager,
            cut_policy=CutPolicy.normalized(table.random_cut_card, table.penetration_percent),
            rng=rng,
        )
        self.counter = KOCounter(num_decks=rules.num_decks)
        self.counter.attach(self.engine.events)
        self.engine.events.subscribe(self._on_settled, EventType.ROUND_SETTLED)
        self.engine.events.subscribe(self._on_funds_added, EventType.FUNDS_ADDED)

        self._round_task: asyncio.Task | None = None
        self._dirty = not restored

    @property
    def awaiting_insurance(self) -> bool:
        return self._round_task is not None and not self._round_task.done()

    async def run(self, action: Action | str, payload: Any = None) -> ActionResult | None:
        """
        Dispatch an action and return once the table is settled or waiting.

        START_ROUND returns as soon as the round either completes or
        suspends on the insurance decision; INSURANCE_DECISION resumes the
        suspended round and returns when it next settles or suspends.
        Returns None while the round is still waiting on a decision.
        """
        action = Action(action)
        if self.awaiting_insurance and action is not Action.INSURANCE_DECISION:
            return ActionResult(action, False, "Insurance decision pending")

        if action is Action.INSURANCE_DECISION and self.awaiting_insurance:
            result = await self.engine.dispatch(action, payload)
            if self._round_task is not None:
                await self._settle_or_suspend(self._round_task)
            return result

        return await self._drive(self.engine.dispatch(action, payload))

    async def add_funds(self, amount: Any, retry: bool = True) -> ActionResult | None:
        """Deposit chips and, if asked, re-run the action that needed them."""
        request = self.adapter.pending_funds
        self.adapter.pending_funds = None
        self.engine.add_funds(amount)
        if retry and request is not None and request.retry is not None:
            if self.awaiting_insurance:
                return None
            return await self._drive(request.retry())
        return None

    def decline_funds(self) -> FundsReason | None:
        request = self.adapter.pending_funds
        if request is None:
            return None
        self.adapter.pending_funds = None
        self.engine.decline_funds(request)
        return request.reason

    def set_cut_policy(self, random_placement: bool, penetration_percent: Any) -> CutPolicy:
        return self.engine.set_cut_policy(random_placement, penetration_percent)

    def clear_ledger(self) -> None:
        self.ledger.reset()
        self.ledger.set_bankroll(self.engine.bankroll)
        self._dirty = True

    async def save(self) -> None:
        """Persist the ledger save object if it changed."""
        if not self._dirty:
            return
        await update_session(
            self.session_id,
            {
                SESSION_KEY_LEDGER: self.ledger.to_save_object(),
                SESSION_KEY_CREATED_AT: self.created_at,
                SESSION_KEY_LAST_ACTIVITY: int(time.time()),
            },
        )
        self._dirty = False

    async def close(self) -> None:
        """Abandon a round parked on insurance and flush the ledger."""
        task = self._round_task
        self._round_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.engine.drain()
        await self.save()

    async def _drive(self, coro: Awaitable[Any]) -> Any:
        task = asyncio.ensure_future(coro)
        await self._settle_or_suspend(task)
        if task.done():
            return task.result()
        self._round_task = task
        return None

    async def _settle_or_suspend(self, task: asyncio.Future) -> None:
        waiter = asyncio.ensure_future(self.engine.wait_for_decision())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if task.done() and task is self._round_task:
            self._round_task = None
        await self.engine.drain()

    def _on_settled(self, event: GameEvent) -> None:
        self.ledger.append(event.data.get("bankroll_after"))
        self._dirty = True

    def _on_funds_added(self, event: GameEvent) -> None:
        self.ledger.set_bankroll(event.data.get("bankroll"))
        self._dirty = True


# In-memory table cache (ledger persisted in the session store)
_tables: dict[str, TableSession] = {}


async def new_table(session_id: str) -> TableSession:
    """Start a fresh table for the session, discarding any saved ledger."""
    table = TableSession(session_id)
    _tables[session_id] = table
    await table.save()
    return table


async def get_table(session_id: str) -> TableSession:
    """Get the live table, restoring it from its saved ledger if needed."""
    if session_id in _tables:
        return _tables[session_id]

    data = await get_session(session_id) or {}
    table = TableSession(session_id, save=data.get(SESSION_KEY_LEDGER))
    _tables[session_id] = table
    logger.info("Restored table at bankroll %s", table.engine.bankroll)
    await table.save()
    return table


def forget_tables() -> None:
    """Drop every cached table."""
    _tables.clear()


async def close_tables() -> int:
    """Flush and drop every cached table; returns how many were open."""
    tables = list(_tables.values())
    _tables.clear()
    for table in tables:
        await table.close()
    return len(tables)
