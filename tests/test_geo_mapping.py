from __future__ import annotations

import io
import threading

import pytest
from PIL import Image

from tourism_locator.contracts import ColorShare, DetectedObject, GeoLocation, ImageFeatures
from tourism_locator.geo_mapping import (
    COLOR_MATCH_WEIGHT,
    DEFAULT_LOCATIONS,
    OBJECT_MATCH_WEIGHT,
    SCENE_MATCH_WEIGHT,
    GeoMappingLog,
    extract_features,
    feature_similarity,
)


def _png(color=(255, 0, 0), size=(32, 32)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def _loc(name: str) -> GeoLocation:
    return GeoLocation(lat=30.36, lng=112.21, name=name)


def test_extract_features_quantizes_dominant_color():
    features = extract_features(_png(), scene_type="建筑")
    assert features.scene_type == "建筑"
    assert features.dominant_colors[0].color == "rgb(240, 0, 0)"
    assert features.dominant_colors[0].percentage == pytest.approx(100.0)
    assert features.contrast == pytest.approx(0.0)
    assert features.symmetry_score == pytest.approx(1.0)


def test_extract_features_tolerates_undecodable_bytes():
    features = extract_features(b"definitely not an image")
    assert features.dominant_colors == []
    assert features.contrast is None and features.symmetry_score is None


def test_similarity_only_counts_signals_both_sides_have():
    a = ImageFeatures(scene_type="建筑", dominant_colors=[ColorShare(color="rgb(240, 0, 0)", percentage=80.0)])
    same = ImageFeatures(scene_type="建筑", dominant_colors=[ColorShare(color="rgb(240, 0, 0)", percentage=60.0)])
    other = ImageFeatures(scene_type="室内", dominant_colors=[ColorShare(color="rgb(0, 0, 240)", percentage=60.0)])

    assert feature_similarity(a, same) == pytest.approx(1.0)
    assert feature_similarity(a, other) == pytest.approx(0.5 * 0.3 / 0.6)
    assert feature_similarity(ImageFeatures(), a) == 0.0


def test_empty_log_returns_defaults():
    log = GeoMappingLog()
    assert log.find_matching_locations(ImageFeatures(), limit=3) == list(DEFAULT_LOCATIONS[:3])


def test_capacity_evicts_oldest_first():
    log = GeoMappingLog(capacity=3)
    for i in range(5):
        log.add_mapping(ImageFeatures(), _loc(f"p{i}"), 0.9)

    entries = log.snapshot()
    assert len(log) == 3
    assert [m.geo_location.name for m in entries] == ["p2", "p3", "p4"]
    assert [m.id for m in entries] == [3, 4, 5]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        GeoMappingLog(capacity=0)


def test_concurrent_appends_get_unique_monotonic_ids():
    log = GeoMappingLog(capacity=1000)

    def _writer(n: int) -> None:
        for i in range(50):
            log.add_mapping(ImageFeatures(), _loc(f"w{n}-{i}"), 0.5)

    threads = [threading.Thread(target=_writer, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    ids = [m.id for m in log.snapshot()]
    assert len(ids) == 400
    assert ids == sorted(ids)
    assert len(set(ids)) == 400


def test_lookup_ranks_by_similarity_times_confidence():
    log = GeoMappingLog()
    wall = ImageFeatures(scene_type="建筑", objects=[DetectedObject(name="荆州古城墙", confidence=0.9)])
    park = ImageFeatures(scene_type="自然风景", objects=[DetectedObject(name="湖泊", confidence=0.8)])
    log.add_mapping(park, _loc("中山公园"), 0.95)
    log.add_mapping(wall, _loc("荆州古城墙"), 0.7)

    query = ImageFeatures(scene_type="建筑", objects=[DetectedObject(name="荆州古城墙", confidence=0.8)])
    assert [loc.name for loc in log.find_matching_locations(query, limit=2)] == ["荆州古城墙", "中山公园"]


def test_locations_by_scene_type():
    assert [loc.name for loc in GeoMappingLog.locations_by_scene_type("室内")] == ["荆州万达广场", "荆州站"]
    assert GeoMappingLog.locations_by_scene_type("太空") == list(DEFAULT_LOCATIONS)


def test_match_weights_split_the_whole_similarity():
    assert SCENE_MATCH_WEIGHT + COLOR_MATCH_WEIGHT + OBJECT_MATCH_WEIGHT == pytest.approx(1.0)

    a = ImageFeatures(scene_type="建筑", objects=[DetectedObject(name="城门", confidence=1.0)])
    b = ImageFeatures(scene_type="室内", objects=[DetectedObject(name="城门", confidence=1.0)])
    expected = OBJECT_MATCH_WEIGHT / (SCENE_MATCH_WEIGHT + OBJECT_MATCH_WEIGHT)
    assert feature_similarity(a, b) == pytest.approx(expected)
