"""Substring-based keyword scoring."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import FrozenSet, Iterable

from .config import TIER1_INCREMENT, TIER1_KEYWORDS, TIER2_INCREMENT, TIER2_KEYWORDS


class MatchTier(IntEnum):
    NONE = 0
    TIER2 = 1
    TIER1 = 2


@dataclass(frozen=True)
class KeywordTiers:
    """Tier 1 names core landmarks; tier 2 names the broader area."""

    tier1: FrozenSet[str]
    tier2: FrozenSet[str]

    @classmethod
    def target_region(cls) -> "KeywordTiers":
        return cls(tier1=TIER1_KEYWORDS, tier2=TIER2_KEYWORDS)


class TextSimilarityScorer:
    """Case-insensitive containment scoring, capped at 1.0."""

    def __init__(self, tier1_increment: float = TIER1_INCREMENT, tier2_increment: float = TIER2_INCREMENT) -> None:
        self.tier1_increment = tier1_increment
        self.tier2_increment = tier2_increment

    @staticmethod
    def _hits(candidate: str, keywords: Iterable[str]) -> int:
        folded = candidate.casefold()
        return sum(1 for kw in keywords if kw and kw.casefold() in folded)

    def score(self, candidate_name: str, keywords: KeywordTiers) -> float:
        if not candidate_name:
            return 0.0
        total = self._hits(candidate_name, keywords.tier1) * self.tier1_increment
        total += self._hits(candidate_name, keywords.tier2) * self.tier2_increment
        return min(total, 1.0)

    def tier(self, candidate_name: str, keywords: KeywordTiers) -> MatchTier:
        if not candidate_name:
            return MatchTier.NONE
        if self._hits(candidate_name, keywords.tier1):
            return MatchTier.TIER1
        if self._hits(candidate_name, keywords.tier2):
            return MatchTier.TIER2
        return MatchTier.NONE

    def best_tier(self, candidates: Iterable[str], keywords: KeywordTiers) -> MatchTier:
        return max((self.tier(c, keywords) for c in candidates), default=MatchTier.NONE)
