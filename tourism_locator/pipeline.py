from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .combiner import CombinedEvidence, ConfidenceCombiner
from .config import (
    AROUND_RADIUS_M,
    MAX_POI_BUILDINGS,
    MAX_POI_LANDMARKS,
    STRUCTURE_SUFFIXES,
    TARGET_AREA_ADDRESS,
    TARGET_AREA_NAME,
    TARGET_CENTER,
    TARGET_CITY,
    UNKNOWN_REGION,
    UNRESOLVED_ADDRESS,
    UNRESOLVED_LOCATION,
    ServiceConfig,
)
from .contracts import (
    BuildingEntry,
    DetectedObject,
    GeoLocation,
    GeoMapping,
    LandmarkEntry,
    Location,
    LocationInferenceResult,
    PlaceOfInterest,
    RecognizedLandmark,
    Resolution,
    SceneClassification,
    Traced,
    TriState,
)
from .fallback import fallback_landmarks, fallback_scene, fallback_text
from .geo_mapping import GeoMappingLog, extract_features
from .logger import get_logger
from .place_client import PlaceSearchClient
from .vision_client import VisionServiceClient

logger = get_logger(__name__)

T = TypeVar("T")


def unresolved_result(resolution: Resolution = Resolution.OUTAGE) -> LocationInferenceResult:
    return LocationInferenceResult(
        location=Location(name=UNRESOLVED_LOCATION, address=UNRESOLVED_ADDRESS, confidence=0.1),
        landmarks=[],
        buildings=[],
        region=UNKNOWN_REGION,
        is_target_region=TriState.UNKNOWN,
        resolution=resolution,
    )


def _poi_rank_confidence(rank: int, poi: PlaceOfInterest, texts: Sequence[str]) -> float:
    conf = 0.8 - rank * 0.05
    name = poi.name.casefold()
    if any(t.casefold() in name for t in texts):
        conf += 0.15
    return min(conf, 1.0)


def _keep_best(entries: Dict[str, T], name: str, entry: T) -> None:
    current = entries.get(name)
    if current is None or entry.confidence > current.confidence:
        entries[name] = entry


class LocationInferenceEngine:
    """
    One request, strictly in order:
      1) acquire token
      2) OCR + landmark recognition (concurrently)
      3) scene recognition, only when no landmark came back
      4) keyword POI search, then radius search around the target center
      5) combine evidence and assemble the result

    Every step may degrade to its fallback; analyze() itself never raises.
    """

    def __init__(
        self,
        config: ServiceConfig,
        vision: Optional[VisionServiceClient] = None,
        places: Optional[PlaceSearchClient] = None,
        combiner: Optional[ConfidenceCombiner] = None,
        geo_log: Optional[GeoMappingLog] = None,
    ) -> None:
        self.config = config
        self.vision = vision or VisionServiceClient(config)
        self.places = places or PlaceSearchClient(config)
        self.combiner = combiner or ConfidenceCombiner()
        self.geo_log = geo_log

    # -- public ---------------------------------------------------------------

    def analyze(self, image: bytes) -> LocationInferenceResult:
        t0 = time.perf_counter()
        try:
            result = self._analyze(image)
        except Exception:
            logger.exception("inference failed, returning unresolved result")
            result = unresolved_result()
        logger.info(
            "inference complete",
            resolution=result.resolution.value,
            location=result.location.name,
            confidence=round(result.location.confidence, 4),
            is_target_region=result.is_target_region.value,
            elapsed_s=round(time.perf_counter() - t0, 3),
        )
        return result

    def commit_mapping(
        self,
        image: bytes,
        result: LocationInferenceResult,
        scene_type: str = "",
        image_id: Optional[str] = None,
    ) -> Optional[GeoMapping]:
        """Record a confirmed result in the geo-mapping log; analyze() never does."""
        if self.geo_log is None or result.location.lat is None or result.location.lng is None:
            return None
        features = extract_features(
            image,
            scene_type=scene_type,
            objects=[DetectedObject(name=lm.name, confidence=lm.confidence) for lm in result.landmarks],
        )
        location = GeoLocation(
            lat=result.location.lat,
            lng=result.location.lng,
            name=result.location.name,
            address=result.location.address,
        )
        return self.geo_log.add_mapping(features, location, result.location.confidence, image_id=image_id)

    def similar_locations(self, image: bytes, scene_type: str = "", limit: int = 5) -> List[GeoLocation]:
        if self.geo_log is None:
            return []
        return self.geo_log.find_matching_locations(extract_features(image, scene_type=scene_type), limit=limit)

    # -- steps ----------------------------------------------------------------

    def _collect(self, future: Future, deadline: float, operation: str, fallback: Callable[[], T]) -> T:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return future.result(timeout=remaining)
        except FutureTimeout:
            logger.warning("deadline exceeded, using fallback", operation=operation, deadline_s=self.config.deadline_s)
            return fallback()

    def _search_places(
        self, texts: Sequence[str], landmarks: Sequence[RecognizedLandmark]
    ) -> Traced[List[PlaceOfInterest]]:
        keywords = list(texts) + [lm.name for lm in landmarks]
        plausible = self.combiner.is_plausible_target(keywords)
        found = self.places.search_by_keywords_traced(keywords, TARGET_CITY if plausible else None)
        if not found.value and plausible:
            logger.info("keyword search empty, searching around target center", radius_m=AROUND_RADIUS_M)
            around = self.places.search_around_traced(TARGET_CENTER, AROUND_RADIUS_M)
            found = Traced(around.value, found.degraded or around.degraded)
        return found

    def _analyze(self, image: bytes) -> LocationInferenceResult:
        token = self.vision.acquire_token()
        pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="locator")
        try:
            deadline = time.monotonic() + self.config.deadline_s
            text_f = pool.submit(self.vision.detect_text_traced, image, token)
            landmark_f = pool.submit(self.vision.recognize_landmarks_traced, image, token)
            text = self._collect(text_f, deadline, "detect_text", lambda: Traced(fallback_text(image), True))
            landmarks = self._collect(
                landmark_f, deadline, "recognize_landmarks", lambda: Traced(fallback_landmarks(image), True)
            )

            scene: Traced[Optional[SceneClassification]] = Traced(None, False)
            if not landmarks.value:
                scene_f = pool.submit(self.vision.classify_scene_traced, image, token)
                scene = self._collect(
                    scene_f,
                    time.monotonic() + self.config.deadline_s,
                    "classify_scene",
                    lambda: Traced(fallback_scene(image), True),
                )

            poi_f = pool.submit(self._search_places, text.value, landmarks.value)
            pois = self._collect(
                poi_f, time.monotonic() + self.config.deadline_s, "search_places", lambda: Traced([], True)
            )
        finally:
            # Late results from abandoned calls are simply dropped.
            pool.shutdown(wait=False, cancel_futures=True)

        evidence = self.combiner.combine(text.value, landmarks.value, pois.value, scene.value)
        degraded = text.degraded or landmarks.degraded or scene.degraded or pois.degraded
        if not evidence.has_signal:
            resolution = Resolution.OUTAGE if degraded else Resolution.RESOLVED
        else:
            resolution = Resolution.FALLBACK if degraded else Resolution.RESOLVED

        return LocationInferenceResult(
            location=self._choose_location(evidence, landmarks.value, scene.value),
            landmarks=self._landmark_entries(landmarks.value, evidence.ranked_pois, text.value),
            buildings=self._building_entries(landmarks.value, evidence.ranked_pois, text.value),
            region=evidence.region_label,
            is_target_region=evidence.is_target_region,
            resolution=resolution,
        )

    # -- assembly -------------------------------------------------------------

    @staticmethod
    def _choose_location(
        evidence: CombinedEvidence,
        landmarks: Sequence[RecognizedLandmark],
        scene: Optional[SceneClassification],
    ) -> Location:
        conf = evidence.confidence
        best = evidence.best_poi
        if best is not None:
            return Location(
                name=best.name,
                address=best.address or evidence.region_label,
                lat=best.coordinate.lat,
                lng=best.coordinate.lng,
                confidence=conf,
            )
        if landmarks:
            top = max(landmarks, key=lambda lm: lm.confidence)
            return Location(
                name=top.name,
                address=top.address or top.description or UNRESOLVED_ADDRESS,
                lat=top.coordinate.lat if top.coordinate else None,
                lng=top.coordinate.lng if top.coordinate else None,
                confidence=conf,
            )
        if scene is not None:
            return Location(name=f"识别为{scene.scene_label}场景", address="无法确定具体位置", confidence=conf)
        if evidence.is_target_region == TriState.TRUE:
            lat, lng = TARGET_CENTER
            return Location(name=TARGET_AREA_NAME, address=TARGET_AREA_ADDRESS, lat=lat, lng=lng, confidence=conf)
        return Location(name=UNRESOLVED_LOCATION, address=UNRESOLVED_ADDRESS, confidence=conf)

    @staticmethod
    def _landmark_entries(
        landmarks: Sequence[RecognizedLandmark],
        ranked_pois: Sequence[Tuple[PlaceOfInterest, float]],
        texts: Sequence[str],
    ) -> List[LandmarkEntry]:
        entries: Dict[str, LandmarkEntry] = {}
        for lm in landmarks:
            _keep_best(entries, lm.name, LandmarkEntry(name=lm.name, confidence=lm.confidence, description=lm.description or ""))
        for rank, (poi, _) in enumerate(ranked_pois[:MAX_POI_LANDMARKS]):
            entry = LandmarkEntry(
                name=poi.name,
                confidence=_poi_rank_confidence(rank, poi, texts),
                description=poi.address or poi.category or "无详细描述",
            )
            _keep_best(entries, poi.name, entry)
        return list(entries.values())

    @staticmethod
    def _building_entries(
        landmarks: Sequence[RecognizedLandmark],
        ranked_pois: Sequence[Tuple[PlaceOfInterest, float]],
        texts: Sequence[str],
    ) -> List[BuildingEntry]:
        entries: Dict[str, BuildingEntry] = {}
        for rank, (poi, _) in enumerate(ranked_pois[:MAX_POI_BUILDINGS]):
            entry = BuildingEntry(
                name=poi.name,
                type=poi.category or "unknown",
                confidence=min(_poi_rank_confidence(rank, poi, texts) + 0.05, 1.0),
                age=poi.opened,
            )
            _keep_best(entries, poi.name, entry)
        for lm in landmarks:
            if lm.name.endswith(STRUCTURE_SUFFIXES):
                _keep_best(entries, lm.name, BuildingEntry(name=lm.name, type="地标建筑", confidence=lm.confidence))
        return list(entries.values())
