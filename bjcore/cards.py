"""Card vocabulary - immutable card representations with shoe identities."""

from dataclasses import dataclass
from enum import Enum, auto


class Suit(Enum):
    """Card suits."""

    SPADES = auto()
    HEARTS = auto()
    DIAMONDS = auto()
    CLUBS = auto()

    def __str__(self) -> str:
        symbols = {
            Suit.CLUBS: "♣",
            Suit.DIAMONDS: "♦",
            Suit.HEARTS: "♥",
            Suit.SPADES: "♠",
        }
        return symbols[self]


class Rank(Enum):
    """Card ranks with blackjack values."""

    ACE = 14
    TWO = 2
    THREE = 3
    FOUR = 4
    FIVE = 5
    SIX = 6
    SEVEN = 7
    EIGHT = 8
    NINE = 9
    TEN = 10
    JACK = 11
    QUEEN = 12
    KING = 13

    def __str__(self) -> str:
        if self.value <= 10:
            return str(self.value)
        return {
            Rank.JACK: "J",
            Rank.QUEEN: "Q",
            Rank.KING: "K",
            Rank.ACE: "A",
        }[self]

    @property
    def blackjack_value(self) -> int:
        """Return the blackjack point value (Ace = 11, ten-group = 10)."""
        if self.value <= 10:
            return self.value
        if self == Rank.ACE:
            return 11
        return 10

    @property
    def is_ace(self) -> bool:
        """Check if this rank is an Ace."""
        return self == Rank.ACE

    @property
    def is_ten_group(self) -> bool:
        """Check if this rank is one of 10, J, Q, K."""
        return self in TEN_GROUP

    @classmethod
    def from_string(cls, s: str) -> "Rank":
        """Parse a rank token like 'A', '10', 'T', 'K' or 'KING'."""
        token = "".join(ch for ch in str(s).upper() if ch.isalnum())
        if token in _RANK_WORDS:
            token = _RANK_WORDS[token]
        if token not in _RANK_TOKENS:
            raise ValueError(f"Invalid rank: {s}")
        return _RANK_TOKENS[token]


TEN_GROUP = frozenset({Rank.TEN, Rank.JACK, Rank.QUEEN, Rank.KING})

_RANK_TOKENS = {str(rank): rank for rank in Rank}
_RANK_WORDS = {
    "ACE": "A",
    "1": "A",
    "KING": "K",
    "QUEEN": "Q",
    "JACK": "J",
    "T": "10",
}


@dataclass(frozen=True, slots=True)
class Card:
    """
    Immutable playing card.

    ``card_id`` is the stable identity of one physical card within a shoe
    (``"<shoe_id>-<sequence>"``). Cards built outside a shoe have no identity.
    """

    rank: Rank
    suit: Suit
    card_id: str = ""

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"

    def __repr__(self) -> str:
        if self.card_id:
            return f"Card({self.rank.name}, {self.suit.name}, {self.card_id!r})"
        return f"Card({self.rank.name}, {self.suit.name})"

    @property
    def value(self) -> int:
        """Return the blackjack point value."""
        return self.rank.blackjack_value

    @property
    def is_ace(self) -> bool:
        return self.rank.is_ace

    @property
    def is_ten_group(self) -> bool:
        return self.rank.is_ten_group

    def same_face(self, other: "Card") -> bool:
        """Check rank and suit equality, ignoring identity."""
        return self.rank == other.rank and self.suit == other.suit

    @classmethod
    def from_string(cls, s: str) -> "Card":
        """Create a card from a string like '2♣', 'AS', 'Kh', '10D'."""
        s = s.strip().upper()
        if len(s) < 2:
            raise ValueError(f"Invalid card string: {s}")

        rank_str = s[:-1]
        suit_str = s[-1]

        suit_map = {
            "C": Suit.CLUBS,
            "♣": Suit.CLUBS,
            "D": Suit.DIAMONDS,
            "♦": Suit.DIAMONDS,
            "H": Suit.HEARTS,
            "♥": Suit.HEARTS,
            "S": Suit.SPADES,
            "♠": Suit.SPADES,
        }

        if suit_str not in suit_map:
            raise ValueError(f"Invalid suit: {suit_str}")

        return cls(Rank.from_string(rank_str), suit_map[suit_str])
