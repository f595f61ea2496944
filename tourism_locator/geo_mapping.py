from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from typing import Deque, Dict, List, Optional, Sequence

from .config import GEO_MAPPING_CAPACITY
from .contracts import ColorShare, DetectedObject, GeoLocation, GeoMapping, ImageFeatures
from .io import dominant_colors, tonal_profile
from .logger import get_logger

logger = get_logger(__name__)

SCENE_MATCH_WEIGHT = 0.3
COLOR_MATCH_WEIGHT = 0.3
OBJECT_MATCH_WEIGHT = 0.4

DEFAULT_LOCATIONS = (
    GeoLocation(lat=30.3602, lng=112.2095, name="荆州古城墙", address="湖北省荆州市荆州区张居正街2号", category="历史建筑"),
    GeoLocation(lat=30.3680, lng=112.2203, name="荆州博物馆", address="湖北省荆州市荆州区荆中路166号", category="文化场馆"),
    GeoLocation(lat=30.3610, lng=112.2140, name="张居正故居", address="湖北省荆州市荆州区张居正街", category="历史故居"),
    GeoLocation(lat=30.3500, lng=112.2200, name="章华寺", address="湖北省荆州市沙市区太师渊路", category="宗教场所"),
    GeoLocation(lat=30.4200, lng=112.1500, name="楚王车马阵", address="湖北省荆州市荆州区川店镇", category="历史遗址"),
)

SCENE_LOCATIONS: Dict[str, Sequence[GeoLocation]] = {
    "建筑": DEFAULT_LOCATIONS[:2],
    "自然风景": (
        GeoLocation(lat=30.3750, lng=112.2500, name="中山公园", address="湖北省荆州市沙市区公园路", category="公园"),
        GeoLocation(lat=30.3500, lng=112.1900, name="长江边", address="湖北省荆州市长江沿岸", category="自然景观"),
    ),
    "室内": (
        GeoLocation(lat=30.3650, lng=112.2150, name="荆州万达广场", address="湖北省荆州市荆州区北京西路", category="购物中心"),
        GeoLocation(lat=30.3700, lng=112.2200, name="荆州站", address="湖北省荆州市沙市区楚源大道", category="交通枢纽"),
    ),
}


def extract_features(
    image: bytes,
    scene_type: str = "",
    objects: Sequence[DetectedObject] = (),
) -> ImageFeatures:
    tonal = tonal_profile(image)
    return ImageFeatures(
        dominant_colors=dominant_colors(image),
        scene_type=scene_type,
        objects=list(objects),
        contrast=tonal[0] if tonal else None,
        symmetry_score=tonal[1] if tonal else None,
    )


def _color_similarity(a: Sequence[ColorShare], b: Sequence[ColorShare]) -> float:
    if not a or not b:
        return 0.0
    return 1.0 if a[0].color == b[0].color else 0.5


def _object_similarity(a: Sequence[DetectedObject], b: Sequence[DetectedObject]) -> float:
    if not a or not b:
        return 0.0
    others = {obj.name: obj.confidence for obj in b}
    shared = [(obj.confidence + others[obj.name]) / 2 for obj in a if obj.name in others]
    return sum(shared) / len(shared) if shared else 0.0


def feature_similarity(a: ImageFeatures, b: ImageFeatures) -> float:
    """Weighted similarity normalized by the weights that applied."""
    score = 0.0
    weight_sum = 0.0
    if a.scene_type and b.scene_type:
        score += SCENE_MATCH_WEIGHT if a.scene_type == b.scene_type else 0.0
        weight_sum += SCENE_MATCH_WEIGHT
    if a.dominant_colors and b.dominant_colors:
        score += COLOR_MATCH_WEIGHT * _color_similarity(a.dominant_colors, b.dominant_colors)
        weight_sum += COLOR_MATCH_WEIGHT
    if a.objects and b.objects:
        score += OBJECT_MATCH_WEIGHT * _object_similarity(a.objects, b.objects)
        weight_sum += OBJECT_MATCH_WEIGHT
    return score / weight_sum if weight_sum > 0 else 0.0


class GeoMappingLog:
    """
    Append-only, size-bounded log of image-feature -> location mappings.

    Oldest entries are evicted once capacity is reached. Appends are
    serialized by a lock so ids stay monotonic under concurrent writers.
    Lookups are a similarity side channel, never authoritative.
    """

    def __init__(self, capacity: int = GEO_MAPPING_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: Deque[GeoMapping] = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> List[GeoMapping]:
        with self._lock:
            return list(self._entries)

    def add_mapping(
        self,
        features: ImageFeatures,
        location: GeoLocation,
        confidence: float,
        image_id: Optional[str] = None,
    ) -> GeoMapping:
        with self._lock:
            mapping = GeoMapping(
                id=next(self._ids),
                image_features=features,
                geo_location=location,
                confidence=confidence,
                timestamp=time.time(),
                image_id=image_id,
            )
            self._entries.append(mapping)
        logger.debug("geo mapping added", id=mapping.id, name=location.name, size=len(self._entries))
        return mapping

    def find_matching_locations(self, features: ImageFeatures, limit: int = 5) -> List[GeoLocation]:
        entries = self.snapshot()
        if not entries:
            return list(DEFAULT_LOCATIONS[:limit])
        scored = sorted(
            entries,
            key=lambda m: feature_similarity(features, m.image_features) * m.confidence,
            reverse=True,
        )
        return [m.geo_location for m in scored[:limit]]

    @staticmethod
    def locations_by_scene_type(scene_type: str) -> List[GeoLocation]:
        return list(SCENE_LOCATIONS.get(scene_type, DEFAULT_LOCATIONS))
