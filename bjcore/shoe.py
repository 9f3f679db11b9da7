"""
Multi-deck shoe with a cut marker.

Cards are dealt from the front of the shoe array through a draw cursor. The
cut marker is a token spliced into the array at shuffle time; reaching it
either reshuffles immediately (between rounds) or raises a "shuffle pending"
flag and keeps dealing from the same physical shoe (mid-round).
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass
from enum import Enum, auto
from random import Random
from typing import Callable

from bjcore.cards import Card, Rank, Suit

logger = logging.getLogger(__name__)

MIN_PENETRATION = 65
MAX_PENETRATION = 90
PENETRATION_STEP = 5
DEFAULT_PENETRATION = 75

# Random placement window, as fractions of the shoe.
RANDOM_CUT_RANGE = (0.70, 0.80)


class _CutCard:
    """The single cut-marker token placed in a shoe."""

    _instance: "_CutCard | None" = None

    def __new__(cls) -> "_CutCard":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CUT_CARD"


CUT_CARD = _CutCard()


def normalize_penetration(percent: object) -> int:
    """Clamp a penetration percentage into [65, 90] and snap it to 5% steps."""
    try:
        value = float(percent)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        value = float(DEFAULT_PENETRATION)
    if not math.isfinite(value):
        value = float(DEFAULT_PENETRATION)
    value = max(MIN_PENETRATION, min(MAX_PENETRATION, value))
    snapped = int(PENETRATION_STEP * math.floor(value / PENETRATION_STEP + 0.5))
    return max(MIN_PENETRATION, min(MAX_PENETRATION, snapped))


@dataclass(frozen=True)
class CutPolicy:
    """Where the cut marker goes when a shoe is shuffled."""

    random_placement: bool = False
    penetration_percent: int = DEFAULT_PENETRATION

    @classmethod
    def normalized(
        cls,
        random_placement: bool = False,
        penetration_percent: object = DEFAULT_PENETRATION,
    ) -> "CutPolicy":
        """Build a policy with the penetration clamped and snapped."""
        return cls(
            random_placement=bool(random_placement),
            penetration_percent=normalize_penetration(penetration_percent),
        )


class ShoeState(Enum):
    """Lifecycle of a shoe instance."""

    EMPTY = auto()
    ACTIVE = auto()
    CUT_MARKER_PENDING = auto()  # marker consumed, reshuffle owed
    EXHAUSTED = auto()


@dataclass(frozen=True)
class ShoeAudit:
    """Result of a composition check on a freshly built shoe."""

    ok: bool
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class ShuffleReport:
    """Returned by every new shoe build."""

    shoe_id: int
    audit: ShoeAudit
    cut_index: int


@dataclass(frozen=True)
class DrawResult:
    """A drawn card plus the flags the caller needs for presentation."""

    card: Card
    shuffle_pending: bool = False
    shuffled_now: bool = False


def build_cards(num_decks: int, shoe_id: int) -> list[Card]:
    """Build ``num_decks`` ordered decks, each card tagged ``<shoe_id>-<seq>``."""
    cards: list[Card] = []
    seq = 0
    for _ in range(num_decks):
        for suit in Suit:
            for rank in Rank:
                cards.append(Card(rank, suit, f"{shoe_id}-{seq}"))
                seq += 1
    return cards


def audit_cards(cards: list[Card], num_decks: int) -> ShoeAudit:
    """Check that every suit x rank combination appears exactly ``num_decks`` times."""
    issues: list[str] = []
    expected_total = 52 * num_decks
    if len(cards) != expected_total:
        issues.append(f"Total cards {len(cards)} != expected {expected_total}")

    counts: Counter[tuple[Suit, Rank]] = Counter()
    for card in cards:
        if not isinstance(card, Card):
            issues.append("Encountered invalid card object")
            continue
        counts[(card.suit, card.rank)] += 1

    if len(counts) != 52:
        issues.append(f"Distinct suit/rank combos {len(counts)} != 52")
    for suit in Suit:
        for rank in Rank:
            n = counts.get((suit, rank), 0)
            if n != num_decks:
                issues.append(f"Count for {rank}{suit} = {n} (expected {num_decks})")

    ids = [card.card_id for card in cards if isinstance(card, Card)]
    if len(set(ids)) != len(ids):
        issues.append("Duplicate card identities")

    return ShoeAudit(ok=not issues, issues=tuple(issues))


class Shoe:
    """A multi-deck shoe for blackjack with cut-marker penetration."""

    def __init__(
        self,
        num_decks: int = 6,
        cut_policy: CutPolicy | None = None,
        rng: Random | None = None,
    ) -> None:
        """
        Initialize an empty shoe. Call ``new_shuffled_shoe`` (or draw) to fill it.

        Args:
            num_decks: Number of decks in the shoe
            cut_policy: Cut marker placement policy
            rng: Random number generator for shuffling and random cut placement
        """
        if num_decks < 1:
            raise ValueError("Shoe must have at least 1 deck")

        self._num_decks = num_decks
        self._cut_policy = cut_policy or CutPolicy()
        self._rng = rng or Random()
        self._cards: list[Card | _CutCard] = []
        self._pos = 0
        self._cut_index = -1
        self._discard: list[Card] = []
        self._extracted = 0
        self._shoe_id = 0
        self._last_audit = ShoeAudit(ok=True)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def new_shuffled_shoe(self) -> ShuffleReport:
        """Build, audit, shuffle and cut a fresh shoe."""
        next_id = self._shoe_id + 1
        cards = build_cards(self._num_decks, next_id)
        audit = self.audit(cards)

        self._rng.shuffle(cards)
        arranged: list[Card | _CutCard] = list(cards)
        cut_index = self._cut_position(len(cards))
        arranged.insert(cut_index, CUT_CARD)

        self._cards = arranged
        self._cut_index = cut_index
        self._pos = 0
        self._discard = []
        self._extracted = 0
        self._shoe_id = next_id
        self._last_audit = audit

        logger.info(
            "New shoe #%d: %d decks, cut marker at %d (%s)",
            next_id,
            self._num_decks,
            cut_index,
            "random" if self._cut_policy.random_placement else
            f"{self._cut_policy.penetration_percent}%",
        )
        return ShuffleReport(shoe_id=next_id, audit=audit, cut_index=cut_index)

    def audit(self, cards: list[Card]) -> ShoeAudit:
        """Audit a card list; failures are logged, never raised."""
        result = audit_cards(cards, self._num_decks)
        if not result.ok:
            logger.critical("Shoe validation FAILED: %s", "; ".join(result.issues))
        return result

    def _cut_position(self, total: int) -> int:
        policy = self._cut_policy
        if policy.random_placement:
            low = math.floor(total * RANDOM_CUT_RANGE[0])
            high = math.floor(total * RANDOM_CUT_RANGE[1])
            pos = self._rng.randint(low, high)
        else:
            pos = math.floor(total * policy.penetration_percent / 100)
        # Keep at least one card on each side of the marker.
        return max(1, min(total - 1, pos))

    def set_cut_policy(self, policy: CutPolicy) -> CutPolicy:
        """
        Replace the cut policy.

        The policy is locked for a shoe once its first card is drawn; in that
        case the new policy applies from the next shuffle. An undealt shoe has
        its marker re-placed right away.
        """
        self._cut_policy = CutPolicy.normalized(
            policy.random_placement, policy.penetration_percent
        )
        if self._cards and not self.policy_locked:
            self._cards.pop(self._cut_index)
            self._cut_index = self._cut_position(len(self._cards))
            self._cards.insert(self._cut_index, CUT_CARD)
        return self._cut_policy

    def _ensure(self) -> bool:
        """Build a new shoe if this one is empty or dealt out."""
        if not self._cards or self._pos >= len(self._cards):
            self.new_shuffled_shoe()
            return True
        return False

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def _consume_cut_at_mouth(self, in_round: bool) -> tuple[bool, bool]:
        """Handle a cut marker sitting at the draw cursor. Returns (pending, shuffled)."""
        if self._pos < len(self._cards) and self._cards[self._pos] is CUT_CARD:
            self._pos += 1
            if in_round:
                logger.debug("Cut card reached mid-round on shoe #%d", self._shoe_id)
                return True, False
            self.new_shuffled_shoe()
            return False, True
        return False, False

    def draw(self, in_round: bool = False) -> DrawResult:
        """
        Draw the next card.

        If the cut marker is next it is consumed: mid-round the shuffle is
        deferred (``shuffle_pending``) and dealing continues into the rest of
        the shoe; between rounds a new shoe is built immediately
        (``shuffled_now``) and the draw retried.
        """
        rebuilt = self._ensure()
        shuffle_pending, shuffled_now = self._consume_cut_at_mouth(in_round)
        shuffled_now = self._ensure() or shuffled_now or rebuilt

        card = self._cards[self._pos]
        self._pos += 1
        if not isinstance(card, Card):
            # The marker, only reachable if it sat at the very end of an array.
            retry = self.draw(in_round)
            return DrawResult(
                card=retry.card,
                shuffle_pending=shuffle_pending or retry.shuffle_pending,
                shuffled_now=shuffled_now or retry.shuffled_now,
            )

        self._discard.append(card)
        return DrawResult(card=card, shuffle_pending=shuffle_pending, shuffled_now=shuffled_now)

    def _extract(self, match: Callable[[Card], bool]) -> Card | None:
        for i in range(self._pos, len(self._cards)):
            card = self._cards[i]
            if card is CUT_CARD or not isinstance(card, Card):
                continue
            if match(card):
                del self._cards[i]
                if self._cut_index >= 0 and i < self._cut_index:
                    self._cut_index -= 1
                self._extracted += 1
                self._discard.append(card)
                return card
        return None

    def _draw_where(
        self,
        match: Callable[[Card], bool],
        in_round: bool,
        what: str,
    ) -> DrawResult:
        rebuilt = self._ensure()
        shuffle_pending, shuffled_now = self._consume_cut_at_mouth(in_round)
        shuffled_now = self._ensure() or shuffled_now or rebuilt

        card = self._extract(match)
        if card is None:
            logger.warning("%s not found in shoe #%d; reshuffling", what, self._shoe_id)
            self.new_shuffled_shoe()
            shuffled_now = True
            card = self._extract(match)

        if card is None:
            logger.warning("%s not found after reshuffle; falling back to draw()", what)
            fallback = self.draw(in_round)
            return DrawResult(
                card=fallback.card,
                shuffle_pending=shuffle_pending or fallback.shuffle_pending,
                shuffled_now=shuffled_now or fallback.shuffled_now,
            )

        return DrawResult(card=card, shuffle_pending=shuffle_pending, shuffled_now=shuffled_now)

    def draw_specific(self, target: Card | None, in_round: bool = False) -> DrawResult:
        """
        Pull the first undrawn card with the target's rank and suit.

        On a miss the shoe is reshuffled once and the search retried; if it
        still misses, a plain draw is returned. A missing target is a plain draw.
        """
        if target is None:
            return self.draw(in_round)
        return self._draw_where(target.same_face, in_round, f"drawSpecific {target}")

    def draw_matching(self, first_card: Card | None, in_round: bool = False) -> DrawResult:
        """
        Pull the first undrawn card that pairs with ``first_card`` by value.

        Ten-group cards match any ten-group card; otherwise ranks must match.
        Miss handling is the same as ``draw_specific``.
        """
        if first_card is None:
            return self.draw(in_round)
        if first_card.is_ten_group:
            def match(card: Card) -> bool:
                return card.is_ten_group
        else:
            def match(card: Card) -> bool:
                return card.rank == first_card.rank
        return self._draw_where(match, in_round, f"drawMatching {first_card}")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> ShoeState:
        if not self._cards:
            return ShoeState.EMPTY
        if self._pos >= len(self._cards):
            return ShoeState.EXHAUSTED
        if 0 <= self._cut_index < self._pos:
            return ShoeState.CUT_MARKER_PENDING
        return ShoeState.ACTIVE

    @property
    def total_cards(self) -> int:
        """Physical cards in this shoe instance, excluding the marker."""
        in_array = sum(1 for c in self._cards if c is not CUT_CARD)
        return in_array + self._extracted

    @property
    def array_length(self) -> int:
        """Length of the shoe array, marker included."""
        return len(self._cards)

    @property
    def cards_remaining(self) -> int:
        if not self._cards:
            return 0
        remaining = len(self._cards) - self._pos
        if self._cut_index >= self._pos:
            remaining -= 1
        return max(0, remaining)

    @property
    def discard_count(self) -> int:
        return len(self._discard)

    @property
    def cards_until_cut(self) -> int | None:
        """Cards left before the marker; None if no marker was placed."""
        if self._cut_index < 0:
            return None
        if self._cut_index < self._pos:
            return 0
        return self._cut_index - self._pos

    @property
    def cut_index(self) -> int:
        return self._cut_index

    @property
    def shoe_id(self) -> int:
        return self._shoe_id

    @property
    def num_decks(self) -> int:
        return self._num_decks

    @property
    def cut_policy(self) -> CutPolicy:
        return self._cut_policy

    @property
    def policy_locked(self) -> bool:
        """True once a card has been drawn from the current shoe."""
        return self._pos > 0 or self._extracted > 0

    @property
    def last_audit(self) -> ShoeAudit:
        return self._last_audit

    def undrawn_cards(self) -> list[Card]:
        """Cards still ahead of the cursor, in deal order, marker excluded."""
        return [c for c in self._cards[self._pos:] if isinstance(c, Card)]

    def __len__(self) -> int:
        return self.cards_remaining
