from __future__ import annotations

import base64

import pytest

from tourism_locator import fallback as fallback_mod
from tourism_locator.config import OFFLINE_TOKEN, ServiceConfig
from tourism_locator.vision_client import VisionServiceClient


def _image_in_bucket(bucket: int) -> bytes:
    for i in range(200):
        data = f"jpeg-payload-{i:03d}".encode("utf-8") * 8
        if fallback_mod.fallback_bucket(data) == bucket:
            return data
    raise AssertionError(f"no sample image for bucket {bucket}")


def test_image_hash_matches_documented_arithmetic():
    data = bytes(range(256))
    expected = sum(base64.b64encode(data)[:100])
    assert fallback_mod.image_hash(data) == expected
    assert fallback_mod.fallback_bucket(data) == expected % 3


@pytest.mark.parametrize("bucket", [0, 1, 2])
def test_fallbacks_are_repeatable(bucket):
    image = _image_in_bucket(bucket)
    assert fallback_mod.fallback_text(image) == fallback_mod.fallback_text(image)
    assert fallback_mod.fallback_landmarks(image) == fallback_mod.fallback_landmarks(image)
    assert fallback_mod.fallback_scene(image) == fallback_mod.fallback_scene(image)


def test_bucket_zero_is_the_city_wall():
    image = _image_in_bucket(0)
    h = fallback_mod.image_hash(image)
    landmarks = fallback_mod.fallback_landmarks(image)

    assert [lm.name for lm in landmarks] == ["荆州古城墙", "荆州博物馆"]
    assert landmarks[0].confidence == pytest.approx(0.6 + (h % 5) / 100)
    assert landmarks[1].confidence == pytest.approx(0.5 + (h % 3) / 100)
    assert landmarks[0].coordinate.lat == pytest.approx(30.335 + (h % 5) / 1000)
    assert fallback_mod.fallback_text(image) == ["荆州古城", "张居正街"]


def test_buckets_select_different_sites():
    names = {fallback_mod.fallback_landmarks(_image_in_bucket(b))[0].name for b in range(3)}
    assert names == {"荆州古城墙", "章华寺", "楚王车马阵"}


def test_empty_image_has_no_substitute():
    assert fallback_mod.fallback_text(b"") == []
    assert fallback_mod.fallback_landmarks(b"") == []
    assert fallback_mod.fallback_scene(b"") is None


def test_failed_calls_fall_back_identically_run_over_run(monkeypatch):
    from tourism_locator import http_client as http_client_mod

    def _boom(*args, **kwargs):
        raise http_client_mod.requests.ConnectionError("unreachable")

    monkeypatch.setattr(http_client_mod.requests, "post", _boom)

    client = VisionServiceClient(ServiceConfig())
    image = _image_in_bucket(2)

    first = (
        client.detect_text(image, token="tok"),
        client.recognize_landmarks(image, token="tok"),
        client.classify_scene(image, token="tok"),
    )
    second = (
        client.detect_text(image, token="tok"),
        client.recognize_landmarks(image, token="tok"),
        client.classify_scene(image, token="tok"),
    )
    assert first == second
    assert first[1] == fallback_mod.fallback_landmarks(image)


def test_offline_token_skips_the_network(monkeypatch):
    from tourism_locator import http_client as http_client_mod

    def _unexpected(*args, **kwargs):
        raise AssertionError("network must not be touched with an offline token")

    monkeypatch.setattr(http_client_mod.requests, "post", _unexpected)

    client = VisionServiceClient(ServiceConfig())
    image = _image_in_bucket(1)
    traced = client.recognize_landmarks_traced(image, token=OFFLINE_TOKEN)

    assert traced.degraded is True
    assert traced.value == fallback_mod.fallback_landmarks(image)
