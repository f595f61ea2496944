from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .config import (
    BASE_CONFIDENCE,
    HERITAGE_CATEGORIES,
    LANDMARK_WEIGHT,
    POI_CATEGORY_WEIGHT,
    POI_NAME_WEIGHT,
    POI_PRESENCE_INCREMENT,
    POI_RELEVANCE_WEIGHT,
    SCENE_WEIGHT,
    TARGET_CITY,
    TARGET_CITY_SHORT,
    TARGET_THRESHOLD,
    TEXT_WEIGHT,
    UNKNOWN_REGION,
)
from .contracts import PlaceOfInterest, RecognizedLandmark, SceneClassification, TriState
from .similarity import KeywordTiers, MatchTier, TextSimilarityScorer

_ADMIN_RE = re.compile(r"(?:.+?省)?(?P<city>[^省市]+?市)(?P<district>.{1,4}?[区县])?")


def region_from_address(text: Optional[str]) -> Optional[str]:
    """"湖北省荆州市荆州区张居正街" -> "荆州市荆州区"; None if no city found."""
    if not text:
        return None
    m = _ADMIN_RE.search(text)
    if not m:
        return None
    return m.group("city") + (m.group("district") or "")


def poi_region(poi: PlaceOfInterest) -> Optional[str]:
    if poi.city:
        return poi.city + (poi.district or "")
    return region_from_address(poi.address)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _dedupe(texts: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(t.strip() for t in texts if t and t.strip()))


@dataclass(frozen=True)
class CombinedEvidence:
    confidence: float
    is_target_region: TriState
    region_label: str
    has_signal: bool
    ranked_pois: List[Tuple[PlaceOfInterest, float]] = field(default_factory=list)

    @property
    def best_poi(self) -> Optional[PlaceOfInterest]:
        return self.ranked_pois[0][0] if self.ranked_pois else None


class ConfidenceCombiner:
    """
    Additive evidence accumulation over text, landmark, scene and POI signals.

    Every increment is clamped into [0, 1] as it is applied; signals only ever
    add evidence, they never cancel each other.
    """

    def __init__(
        self,
        keywords: Optional[KeywordTiers] = None,
        scorer: Optional[TextSimilarityScorer] = None,
        base_confidence: float = BASE_CONFIDENCE,
        threshold: float = TARGET_THRESHOLD,
    ) -> None:
        self.keywords = keywords or KeywordTiers.target_region()
        self.scorer = scorer or TextSimilarityScorer()
        self.base_confidence = base_confidence
        self.threshold = threshold

    def _specificity(self, name: str) -> float:
        return 0.5 + 0.5 * self.scorer.score(name, self.keywords)

    def poi_relevance(self, poi: PlaceOfInterest) -> float:
        relevance = POI_NAME_WEIGHT * self.scorer.score(poi.name, self.keywords)
        if any(cat in poi.category for cat in HERITAGE_CATEGORIES):
            relevance += POI_CATEGORY_WEIGHT
        return _clamp(relevance)

    def rank_pois(self, pois: Sequence[PlaceOfInterest]) -> List[Tuple[PlaceOfInterest, float]]:
        # Stable sort: provider order breaks ties.
        scored = [(poi, self.poi_relevance(poi)) for poi in pois]
        return sorted(scored, key=lambda pair: pair[1], reverse=True)

    def is_plausible_target(self, candidates: Sequence[str]) -> bool:
        return self.scorer.best_tier(candidates, self.keywords) > MatchTier.NONE

    def combine(
        self,
        text_signal: Sequence[str],
        landmark_signal: Sequence[RecognizedLandmark],
        poi_signal: Sequence[PlaceOfInterest],
        scene_signal: Optional[SceneClassification] = None,
    ) -> CombinedEvidence:
        texts = _dedupe(text_signal)
        landmarks = sorted(landmark_signal, key=lambda lm: lm.confidence, reverse=True)
        ranked = self.rank_pois(poi_signal)
        has_signal = bool(texts or landmarks or ranked or scene_signal)

        confidence = self.base_confidence
        if texts:
            confidence = _clamp(confidence + TEXT_WEIGHT * self.scorer.score(" ".join(texts), self.keywords))
        if landmarks:
            top = landmarks[0]
            confidence = _clamp(confidence + LANDMARK_WEIGHT * top.confidence * self._specificity(top.name))
        if scene_signal is not None:
            confidence = _clamp(
                confidence + SCENE_WEIGHT * scene_signal.confidence * self._specificity(scene_signal.scene_label)
            )
        if ranked:
            confidence = _clamp(confidence + POI_PRESENCE_INCREMENT + POI_RELEVANCE_WEIGHT * ranked[0][1])

        admin_regions = []
        if ranked:
            admin_regions.append(poi_region(ranked[0][0]))
        if landmarks:
            admin_regions.append(region_from_address(landmarks[0].address))
        admin_regions = [r for r in admin_regions if r]

        is_target = self._classify(
            has_signal,
            confidence,
            admin_regions,
            texts + [lm.name for lm in landmarks] + [poi.name for poi, _ in ranked]
            + ([scene_signal.scene_label] if scene_signal else []),
        )
        region = self._region_label(ranked, landmarks[0] if landmarks else None, is_target, scene_signal)
        return CombinedEvidence(
            confidence=confidence,
            is_target_region=is_target,
            region_label=region,
            has_signal=has_signal,
            ranked_pois=ranked,
        )

    def _classify(
        self,
        has_signal: bool,
        confidence: float,
        admin_regions: Sequence[str],
        candidates: Sequence[str],
    ) -> TriState:
        # Precedence: explicit administrative region > tier-1 keyword > tier-2 keyword.
        if not has_signal:
            return TriState.UNKNOWN
        if any(TARGET_CITY_SHORT in region for region in admin_regions):
            return TriState.TRUE
        tier = self.scorer.best_tier(candidates, self.keywords)
        if tier == MatchTier.TIER1:
            return TriState.TRUE
        if tier == MatchTier.TIER2:
            return TriState.TRUE if confidence >= self.threshold else TriState.UNKNOWN
        return TriState.FALSE

    @staticmethod
    def _region_label(
        ranked: Sequence[Tuple[PlaceOfInterest, float]],
        top_landmark: Optional[RecognizedLandmark],
        is_target: TriState,
        scene: Optional[SceneClassification],
    ) -> str:
        if ranked:
            best = ranked[0][0]
            label = poi_region(best) or best.address
            if label:
                return label
        if top_landmark is not None and top_landmark.address:
            return region_from_address(top_landmark.address) or top_landmark.address
        if is_target == TriState.TRUE:
            return TARGET_CITY
        if scene is not None:
            return f"可能是{scene.scene_label}场景"
        return UNKNOWN_REGION
