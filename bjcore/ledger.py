"""Rolling bankroll ledger: one bankroll-after point per settled hand."""

import math
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from bjcore.money import to_money

SCHEMA_VERSION = 1
DEFAULT_MAX_HANDS = 2000
MIN_MAX_HANDS = 10
MAX_MAX_HANDS = 10000


@dataclass(frozen=True)
class LedgerEntry:
    """Bankroll after the ``index``-th settled hand."""

    index: int
    bankroll_after: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "bankrollAfter": float(self.bankroll_after)}


@dataclass(frozen=True)
class LedgerSeries:
    """Graph-ready view of the ledger."""

    x: tuple[int, ...]
    y: tuple[Decimal, ...]
    max_hands: int


def _finite(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None
    return None


class BankrollLedger:
    """
    Bounded, append-only ledger of bankroll points.

    Indices increase monotonically across the life of the ledger; once more
    than ``max_hands`` entries exist the oldest are evicted.
    """

    def __init__(self, max_hands: int = DEFAULT_MAX_HANDS) -> None:
        self._max_hands = DEFAULT_MAX_HANDS
        self._hand_counter = 0
        self._bankroll: Decimal | None = None
        self._entries: list[LedgerEntry] = []
        self.set_max_hands(max_hands)

    @property
    def max_hands(self) -> int:
        return self._max_hands

    @property
    def hand_counter(self) -> int:
        return self._hand_counter

    @property
    def bankroll(self) -> Decimal | None:
        """Last known bankroll, or None for an empty ledger."""
        return self._bankroll

    @property
    def entries(self) -> list[LedgerEntry]:
        return self._entries.copy()

    def set_max_hands(self, max_hands: object) -> int:
        """Clamp the window size to [10, 10000] and trim."""
        value = _finite(max_hands)
        if not value:
            value = DEFAULT_MAX_HANDS
        self._max_hands = int(max(MIN_MAX_HANDS, min(MAX_MAX_HANDS, value)))
        self._trim()
        return self._max_hands

    def set_bankroll(self, value: object) -> None:
        if _finite(value) is None:
            return
        self._bankroll = to_money(value)

    def reset(self) -> None:
        self._hand_counter = 0
        self._bankroll = None
        self._entries = []

    def append(self, bankroll_after: object) -> LedgerEntry | None:
        """Record one settled hand; non-numeric input is ignored."""
        if _finite(bankroll_after) is None:
            return None
        self._hand_counter += 1
        entry = LedgerEntry(index=self._hand_counter, bankroll_after=to_money(bankroll_after))
        self._entries.append(entry)
        self._trim()
        self._bankroll = entry.bankroll_after
        return entry

    def series(self) -> LedgerSeries:
        return LedgerSeries(
            x=tuple(e.index for e in self._entries),
            y=tuple(e.bankroll_after for e in self._entries),
            max_hands=self._max_hands,
        )

    def to_save_object(self) -> dict[str, Any]:
        """Persisted shape: schema version, timestamp, bankroll, counter, points."""
        return {
            "schemaVersion": SCHEMA_VERSION,
            "savedAt": int(time.time() * 1000),
            "bankroll": float(self._bankroll) if self._bankroll is not None else None,
            "handCounter": self._hand_counter,
            "ledger": [e.to_dict() for e in self._entries],
        }

    def init_from_save(self, obj: object) -> bool:
        """
        Restore from a save object.

        Anything other than a mapping with the current schema version leaves
        the ledger empty. Malformed points are dropped, the rest sorted by
        index, and the hand counter raised to the last index if needed.

        Returns:
            True if the save was accepted
        """
        self.reset()
        if not isinstance(obj, dict) or _finite(obj.get("schemaVersion")) != SCHEMA_VERSION:
            return False

        counter = _finite(obj.get("handCounter"))
        if counter is not None:
            self._hand_counter = max(0, math.floor(counter))
        bankroll = obj.get("bankroll")
        if _finite(bankroll) is not None:
            self._bankroll = to_money(bankroll)

        points = obj.get("ledger")
        if isinstance(points, list):
            entries = []
            for point in points:
                if not isinstance(point, dict):
                    continue
                index = _finite(point.get("index"))
                value = point.get("bankrollAfter")
                if index is None or _finite(value) is None:
                    continue
                entries.append(LedgerEntry(index=math.floor(index), bankroll_after=to_money(value)))
            entries.sort(key=lambda e: e.index)
            self._entries = entries
            if entries and entries[-1].index > self._hand_counter:
                self._hand_counter = entries[-1].index

        self._trim()
        return True

    def _trim(self) -> None:
        extra = len(self._entries) - self._max_hands
        if extra > 0:
            del self._entries[:extra]

    def __len__(self) -> int:
        return len(self._entries)
