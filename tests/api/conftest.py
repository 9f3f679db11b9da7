"""Fixtures for API tests."""

from decimal import Decimal

import pytest

import api.session as session_module
from api.host import forget_tables
from api.session import InMemorySessionStore
from config import TableConfig


@pytest.fixture(autouse=True)
def memory_store():
    """Fresh in-memory session store and an empty table cache per test."""
    store = InMemorySessionStore()
    session_module._session_store = store
    forget_tables()
    yield store
    forget_tables()
    session_module._session_store = None


@pytest.fixture
def single_deck_config():
    """Single-deck table with the default $1000 bankroll and $10 wager."""
    return TableConfig(
        num_decks=1,
        penetration_percent=75,
        random_cut_card=False,
        min_bet=Decimal("5"),
        bet_unit=Decimal("5"),
        starting_bankroll=Decimal("1000"),
        default_wager=Decimal("10"),
        dealer_hits_soft_17=True,
        surrender_allowed=False,
        max_split_hands=4,
        ledger_max_hands=2000,
    )
