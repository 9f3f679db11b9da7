"""Blackjack table core - 100% UI-agnostic."""

from bjcore.adapter import FundsReason, FundsRequest, Lane, SilentAdapter, TableAdapter
from bjcore.cards import Card, Rank, Suit
from bjcore.counting import KOCounter
from bjcore.engine import ActionResult, DealScenario, DevOptions, RoundEngine
from bjcore.errors import AdapterConfigurationError, TableError, UnknownActionError
from bjcore.hand import Hand, Outcome
from bjcore.ledger import BankrollLedger
from bjcore.rules import RuleSet
from bjcore.shoe import CutPolicy, Shoe
from bjcore.state import Action, RoundPhase

__all__ = [
    "Action",
    "ActionResult",
    "AdapterConfigurationError",
    "BankrollLedger",
    "Card",
    "CutPolicy",
    "DealScenario",
    "DevOptions",
    "FundsReason",
    "FundsRequest",
    "Hand",
    "KOCounter",
    "Lane",
    "Outcome",
    "Rank",
    "RoundEngine",
    "RoundPhase",
    "RuleSet",
    "Shoe",
    "SilentAdapter",
    "Suit",
    "TableAdapter",
    "TableError",
    "UnknownActionError",
]
