"""Round phase enumeration."""

from enum import Enum


class RoundPhase(Enum):
    """
    Round state machine phases.

    Flow: IDLE → DEALING → (INSURANCE) → PLAYER_TURN → DEALER_TURN → SETTLING → IDLE
    """

    # Between rounds
    IDLE = "idle"

    # Initial four cards being dealt
    DEALING = "dealing"

    # Waiting on the insurance decision (dealer shows an ace)
    INSURANCE = "insurance"

    # Player acting on one or more hands
    PLAYER_TURN = "player_turn"

    # Dealer reveals and draws
    DEALER_TURN = "dealer_turn"

    # Paying out
    SETTLING = "settling"

    # Terminal; reachable only through an external end-game signal
    GAME_OVER = "game_over"

    def __str__(self) -> str:
        return self.name.replace("_", " ").title()


class Action(str, Enum):
    """Host-facing actions accepted by ``RoundEngine.dispatch``."""

    NEW_SHOE = "NEW_SHOE"
    START_ROUND = "START_ROUND"
    HIT = "HIT"
    STAND = "STAND"
    DOUBLE = "DOUBLE"
    SPLIT = "SPLIT"
    SURRENDER = "SURRENDER"
    INSURANCE_DECISION = "INSURANCE_DECISION"

    def __str__(self) -> str:
        return self.value
