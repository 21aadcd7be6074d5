# -*- coding: utf-8 -*-
"""
tarot_core.py — Core Tarot mechanisms (catalog / spreads / shuffle / draw session)

Responsibilities:
- Define the 78-card catalog (22 major + 56 minor arcana) with keyword sets
- Define spreads (single_card / three_card_time / three_card_mind_body_spirit / celtic_cross)
- Provide unbiased shuffling (Fisher–Yates) with reproducible randomness
  (seed can be int or str; str will be hashed)
- Provide the draw-session state machine: one card per position, one draw
  in flight at a time, orientation decided by an independent fair coin
- Public API: list_spreads / get_spread / get_card / build_deck / shuffle_deck /
  DrawSession / draw_cards

Note:
- This module only implements Tarot mechanics and is UI/LLM agnostic.
  Orchestration (session handoff, LLM analysis, history) lives in logic.py.
"""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple, Union


# =========================
# Types & Error classes
# =========================

class TarotCoreError(Exception):
    """Base class for tarot-core errors."""


class InvalidSpreadError(TarotCoreError):
    """Raised when a spread id is not registered or its positions are inconsistent."""


class InvalidParameterError(TarotCoreError):
    """Raised when an input parameter is invalid."""


Suit = Literal["major", "wands", "cups", "swords", "pentacles"]
Seed = Optional[Union[int, str]]


@dataclass(frozen=True)
class TarotCard:
    """Immutable catalog entry."""
    id: str                      # major: "0".."21"; minor: "ace_wands", "two_cups", ...
    name: str                    # display name, e.g. "愚者", "权杖王牌"
    english_name: str            # e.g. "The Fool", "Ace of Wands"
    suit: Suit
    upright_keywords: Tuple[str, ...]
    reversed_keywords: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "englishName": self.english_name,
            "suit": self.suit,
            "uprightKeywords": list(self.upright_keywords),
            "reversedKeywords": list(self.reversed_keywords),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TarotCard":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            english_name=data["englishName"],
            suit=data["suit"],
            upright_keywords=tuple(data.get("uprightKeywords", ())),
            reversed_keywords=tuple(data.get("reversedKeywords", ())),
        )


@dataclass(frozen=True)
class SpreadPosition:
    id: int
    name: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpreadPosition":
        return cls(id=int(data["id"]), name=data["name"], description=data.get("description", ""))


@dataclass(frozen=True)
class Spread:
    """Spread definition; positions are ordered and their count equals card_count."""
    id: str
    name: str
    english_name: str
    description: str
    card_count: int
    positions: Tuple[SpreadPosition, ...]

    def position(self, position_id: int) -> Optional[SpreadPosition]:
        for pos in self.positions:
            if pos.id == position_id:
                return pos
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "englishName": self.english_name,
            "description": self.description,
            "cardCount": self.card_count,
            "positions": [p.to_dict() for p in self.positions],
        }


@dataclass(frozen=True)
class DrawnCard:
    """A catalog card bound to one spread position, upright or reversed."""
    card: TarotCard
    is_reversed: bool
    position: SpreadPosition

    @property
    def orientation(self) -> str:
        return "reversed" if self.is_reversed else "upright"

    @property
    def keywords(self) -> Tuple[str, ...]:
        return self.card.reversed_keywords if self.is_reversed else self.card.upright_keywords

    def to_dict(self) -> Dict[str, Any]:
        return {
            "card": self.card.to_dict(),
            "isReversed": self.is_reversed,
            "position": self.position.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DrawnCard":
        return cls(
            card=TarotCard.from_dict(data["card"]),
            is_reversed=bool(data["isReversed"]),
            position=SpreadPosition.from_dict(data["position"]),
        )


# =========================
# Spread registry
# =========================

def _spread(
    spread_id: str,
    name: str,
    english_name: str,
    description: str,
    positions: List[Tuple[str, str]],
) -> Spread:
    return Spread(
        id=spread_id,
        name=name,
        english_name=english_name,
        description=description,
        card_count=len(positions),
        positions=tuple(
            SpreadPosition(id=i + 1, name=pname, description=pdesc)
            for i, (pname, pdesc) in enumerate(positions)
        ),
    )


SPREAD_REGISTRY: Dict[str, Spread] = {
    s.id: s
    for s in (
        _spread(
            "single_card", "单张牌", "Single Card",
            "一张牌，直指问题的核心。",
            [("Present", "The central message for the question right now")],
        ),
        _spread(
            "three_card_time", "时间之流", "Past / Present / Future",
            "三张牌，沿时间线展开问题的来龙去脉。",
            [
                ("Past", "Influences and events that led here"),
                ("Present", "The current situation and energy"),
                ("Future", "The likely direction if nothing changes"),
            ],
        ),
        _spread(
            "three_card_mind_body_spirit", "身心灵", "Mind / Body / Spirit",
            "三张牌，从思想、身体与灵性三个层面观照自己。",
            [
                ("Mind", "Thoughts, beliefs and mental state"),
                ("Body", "Physical condition and material circumstances"),
                ("Spirit", "Inner self and spiritual direction"),
            ],
        ),
        _spread(
            "celtic_cross", "凯尔特十字", "Celtic Cross",
            "十张牌，全面深入地剖析一个复杂问题。",
            [
                ("Present", "The heart of the current situation"),
                ("Challenge", "The obstacle crossing the situation"),
                ("Foundation", "The root or subconscious basis"),
                ("Recent Past", "What is passing out of influence"),
                ("Possible Outcome", "The conscious goal or best outcome"),
                ("Near Future", "What is coming into influence"),
                ("Self", "Your attitude and position"),
                ("Environment", "Influence of others and surroundings"),
                ("Hopes and Fears", "Inner hopes and anxieties"),
                ("Final Outcome", "Where the situation is heading"),
            ],
        ),
    )
}


def list_spreads() -> List[Spread]:
    """Return all available spreads."""
    return list(SPREAD_REGISTRY.values())


def get_spread(spread_id: str) -> Spread:
    """Get a single spread definition; raise if not registered."""
    if spread_id not in SPREAD_REGISTRY:
        raise InvalidSpreadError(f"Spread '{spread_id}' is not registered.")
    return SPREAD_REGISTRY[spread_id]


# =========================
# 78-card catalog
# =========================

_MAJORS: List[Tuple[str, str, Tuple[str, ...], Tuple[str, ...]]] = [
    ("愚者", "The Fool", ("new beginnings", "spontaneity", "faith"), ("recklessness", "hesitation", "naivety")),
    ("魔术师", "The Magician", ("willpower", "skill", "manifestation"), ("manipulation", "untapped talent", "scattered focus")),
    ("女祭司", "The High Priestess", ("intuition", "mystery", "inner voice"), ("secrets", "disconnection", "repressed feelings")),
    ("女皇", "The Empress", ("abundance", "nurturing", "creativity"), ("dependence", "smothering", "creative block")),
    ("皇帝", "The Emperor", ("authority", "structure", "stability"), ("rigidity", "domination", "lack of discipline")),
    ("教皇", "The Hierophant", ("tradition", "guidance", "belief"), ("rebellion", "dogma", "new approaches")),
    ("恋人", "The Lovers", ("love", "harmony", "choices"), ("imbalance", "misalignment", "indecision")),
    ("战车", "The Chariot", ("determination", "control", "victory"), ("lack of direction", "aggression", "obstacles")),
    ("力量", "Strength", ("courage", "compassion", "inner strength"), ("self-doubt", "weakness", "insecurity")),
    ("隐士", "The Hermit", ("introspection", "solitude", "wisdom"), ("isolation", "loneliness", "withdrawal")),
    ("命运之轮", "Wheel of Fortune", ("cycles", "destiny", "turning point"), ("bad luck", "resistance to change", "setbacks")),
    ("正义", "Justice", ("fairness", "truth", "cause and effect"), ("injustice", "dishonesty", "avoidance")),
    ("倒吊人", "The Hanged Man", ("surrender", "new perspective", "pause"), ("stalling", "resistance", "needless sacrifice")),
    ("死神", "Death", ("endings", "transformation", "transition"), ("fear of change", "stagnation", "holding on")),
    ("节制", "Temperance", ("balance", "moderation", "patience"), ("excess", "imbalance", "haste")),
    ("恶魔", "The Devil", ("attachment", "temptation", "bondage"), ("release", "breaking free", "reclaiming power")),
    ("高塔", "The Tower", ("upheaval", "sudden change", "revelation"), ("averted disaster", "fear of change", "delayed collapse")),
    ("星星", "The Star", ("hope", "renewal", "inspiration"), ("despair", "discouragement", "disconnection")),
    ("月亮", "The Moon", ("illusion", "intuition", "the unconscious"), ("clarity", "released fear", "confusion lifting")),
    ("太阳", "The Sun", ("joy", "success", "vitality"), ("temporary gloom", "overconfidence", "delayed success")),
    ("审判", "Judgement", ("awakening", "reckoning", "renewal"), ("self-doubt", "refusal of the call", "harsh judgement")),
    ("世界", "The World", ("completion", "integration", "accomplishment"), ("incompletion", "shortcuts", "lack of closure")),
]

_SUITS: List[Tuple[str, str, str, str]] = [
    # key, display, english, theme
    ("wands", "权杖", "Wands", "action"),
    ("cups", "圣杯", "Cups", "emotion"),
    ("swords", "宝剑", "Swords", "thought"),
    ("pentacles", "星币", "Pentacles", "material life"),
]

_RANKS: List[Tuple[str, str, str, Tuple[str, ...], Tuple[str, ...]]] = [
    # key, display, english, upright, reversed
    ("ace", "王牌", "Ace", ("new potential", "opportunity"), ("missed chance", "delay")),
    ("two", "二", "Two", ("balance", "decision"), ("indecision", "imbalance")),
    ("three", "三", "Three", ("growth", "collaboration"), ("setback", "discord")),
    ("four", "四", "Four", ("stability", "rest"), ("restlessness", "stagnation")),
    ("five", "五", "Five", ("conflict", "loss"), ("recovery", "reconciliation")),
    ("six", "六", "Six", ("harmony", "support"), ("imbalance", "nostalgia")),
    ("seven", "七", "Seven", ("perseverance", "assessment"), ("doubt", "giving up")),
    ("eight", "八", "Eight", ("movement", "diligence"), ("frustration", "restriction")),
    ("nine", "九", "Nine", ("fulfilment", "resilience"), ("anxiety", "exhaustion")),
    ("ten", "十", "Ten", ("culmination", "burden"), ("release", "collapse")),
    ("page", "侍从", "Page", ("curiosity", "message"), ("immaturity", "bad news")),
    ("knight", "骑士", "Knight", ("pursuit", "momentum"), ("impulsiveness", "stalling")),
    ("queen", "王后", "Queen", ("nurturing mastery", "confidence"), ("insecurity", "dependence")),
    ("king", "国王", "King", ("leadership", "control"), ("domination", "misuse of power")),
]


def _build_catalog() -> List[TarotCard]:
    """Build the 78-card catalog (stable order; majors first, then suit by suit)."""
    catalog: List[TarotCard] = []
    for i, (name, english, upright, reversed_) in enumerate(_MAJORS):
        catalog.append(TarotCard(
            id=str(i), name=name, english_name=english, suit="major",
            upright_keywords=upright, reversed_keywords=reversed_,
        ))

    for suit_key, suit_name, suit_english, theme in _SUITS:
        for rank_key, rank_name, rank_english, upright, reversed_ in _RANKS:
            catalog.append(TarotCard(
                id=f"{rank_key}_{suit_key}",
                name=f"{suit_name}{rank_name}",
                english_name=f"{rank_english} of {suit_english}",
                suit=suit_key,  # type: ignore[arg-type]
                upright_keywords=upright + (theme,),
                reversed_keywords=reversed_ + (f"blocked {theme}",),
            ))

    assert len(catalog) == 78, f"Catalog size should be 78, got {len(catalog)}"
    return catalog


CARD_CATALOG: Tuple[TarotCard, ...] = tuple(_build_catalog())
CARD_INDEX: Dict[str, TarotCard] = {c.id: c for c in CARD_CATALOG}

for _s in SPREAD_REGISTRY.values():
    assert len(_s.positions) == _s.card_count <= len(CARD_CATALOG), _s.id


def get_card(card_id: str) -> TarotCard:
    if card_id not in CARD_INDEX:
        raise InvalidParameterError(f"Unknown card id: {card_id}")
    return CARD_INDEX[card_id]


def build_deck(deck_type: str = "rws") -> List[TarotCard]:
    """
    Build an ordered list of cards for the given deck type.
    Currently supported: 'rws'.
    """
    if deck_type != "rws":
        raise InvalidParameterError(f"Unsupported deck_type: {deck_type}")
    return list(CARD_CATALOG)


# =========================
# RNG / Shuffling
# =========================

def _norm_seed(seed: Seed) -> Optional[int]:
    """
    Normalize seed to int. If str, hash with sha256 and take the first 8 bytes
    as an unsigned 64-bit integer. None stays None.
    """
    if seed is None:
        return None
    if isinstance(seed, bool):
        raise InvalidParameterError("seed must be int | str | None")
    if isinstance(seed, int):
        return seed
    if isinstance(seed, str):
        h = hashlib.sha256(seed.encode("utf-8")).digest()
        return int.from_bytes(h[:8], byteorder="big", signed=False)
    raise InvalidParameterError("seed must be int | str | None")


def make_rng(seed: Seed = None) -> random.Random:
    return random.Random(_norm_seed(seed))


def _fisher_yates_shuffle(items: List[TarotCard], rng: random.Random) -> List[TarotCard]:
    """
    Fisher–Yates (Knuth) shuffle.
    Returns a new list and does not mutate the input.
    """
    arr = items[:]
    for i in range(len(arr) - 1, 0, -1):
        j = rng.randint(0, i)  # inclusive
        arr[i], arr[j] = arr[j], arr[i]
    return arr


def shuffle_deck(
    deck: List[TarotCard],
    seed: Seed = None,
    rng: Optional[random.Random] = None,
) -> List[TarotCard]:
    """
    Shuffle a deck using Fisher–Yates. Either pass a seed for reproducibility
    or an already-built random source. Returns a new list.
    """
    return _fisher_yates_shuffle(deck, rng or make_rng(seed))


# =========================
# Draw session
# =========================

class DrawSession:
    """
    One reading's draw state: the deck is permuted once at creation and each
    draw consumes the next unused card, binding it to a spread position.

    A draw is two-phase (begin_draw / finish_draw) so a UI can show an
    animation while the draw is pending; no other draw is accepted meanwhile.
    """

    def __init__(
        self,
        spread: Spread,
        seed: Seed = None,
        rng: Optional[random.Random] = None,
        deck: Optional[List[TarotCard]] = None,
    ) -> None:
        self.spread = spread
        self._rng = rng or make_rng(seed)
        source = deck if deck is not None else build_deck()
        assert spread.card_count <= len(source), (
            f"Spread '{spread.id}' needs {spread.card_count} cards, deck has {len(source)}"
        )
        self._deck = _fisher_yates_shuffle(source, self._rng)
        self._next_index = 0
        self._drawn: List[DrawnCard] = []
        self._pending_position: Optional[SpreadPosition] = None

    @property
    def is_drawing(self) -> bool:
        return self._pending_position is not None

    @property
    def pending_position(self) -> Optional[SpreadPosition]:
        return self._pending_position

    @property
    def drawn_cards(self) -> List[DrawnCard]:
        return list(self._drawn)

    @property
    def is_complete(self) -> bool:
        return len(self._drawn) >= self.spread.card_count

    @property
    def progress(self) -> Tuple[int, int]:
        return len(self._drawn), self.spread.card_count

    def card_at(self, position_id: int) -> Optional[DrawnCard]:
        for dc in self._drawn:
            if dc.position.id == position_id:
                return dc
        return None

    def can_draw_at(self, position_id: int) -> bool:
        return (
            not self.is_drawing
            and not self.is_complete
            and self.spread.position(position_id) is not None
            and self.card_at(position_id) is None
        )

    def next_open_position(self) -> Optional[SpreadPosition]:
        for pos in self.spread.positions:
            if self.card_at(pos.id) is None:
                return pos
        return None

    def begin_draw(self, position_id: int) -> bool:
        """Mark a draw as in progress at the position; False means the request is ignored."""
        if not self.can_draw_at(position_id):
            return False
        self._pending_position = self.spread.position(position_id)
        return True

    def finish_draw(self) -> DrawnCard:
        """Reveal the pending draw: next card of the permutation plus a coin-flip orientation."""
        if self._pending_position is None:
            raise TarotCoreError("No draw in progress")
        card = self._deck[self._next_index]
        is_reversed = self._rng.random() < 0.5
        drawn = DrawnCard(card=card, is_reversed=is_reversed, position=self._pending_position)
        self._drawn.append(drawn)
        self._next_index += 1
        self._pending_position = None
        return drawn

    def draw_at(self, position_id: int) -> Optional[DrawnCard]:
        if not self.begin_draw(position_id):
            return None
        return self.finish_draw()

    def draw_next(self) -> Optional[DrawnCard]:
        """Strictly-ordered variant: draw at the first unfilled position."""
        pos = self.next_open_position()
        if pos is None:
            return None
        return self.draw_at(pos.id)


def draw_cards(spread_id: str, seed: Seed = None) -> List[DrawnCard]:
    """
    Draw a whole spread in position order.

    Args:
        spread_id: registered spread id
        seed: reproducibility seed (int or str). str is hashed internally
    """
    session = DrawSession(get_spread(spread_id), seed=seed)
    while not session.is_complete:
        session.draw_next()
    return session.drawn_cards
