from __future__ import annotations

import pytest

from tourism_locator import http_client as http_client_mod
from tourism_locator.config import OFFLINE_TOKEN, ServiceConfig
from tourism_locator.fallback import fallback_landmarks, fallback_scene, fallback_text
from tourism_locator.vision_client import VisionServiceClient

_CFG = ServiceConfig(baidu_api_key="ak", baidu_secret_key="sk")
_IMAGE = b"\xff\xd8\xff\xe0not-really-a-jpeg" * 4


class _FakeResp:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise http_client_mod.requests.HTTPError(f"{self.status_code}", response=self)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def _route(monkeypatch, by_url):
    calls = []

    def _fake_post(url, params=None, data=None, headers=None, timeout=None):
        calls.append((url, params, data))
        return by_url[url]

    monkeypatch.setattr(http_client_mod.requests, "post", _fake_post)
    return calls


def test_token_is_requested_with_client_credentials(monkeypatch):
    calls = _route(monkeypatch, {_CFG.baidu_token_url: _FakeResp({"access_token": "tok-1", "expires_in": 2592000})})

    assert VisionServiceClient(_CFG).acquire_token() == "tok-1"
    _, params, _ = calls[0]
    assert params == {"grant_type": "client_credentials", "client_id": "ak", "client_secret": "sk"}


@pytest.mark.parametrize(
    "response",
    [
        _FakeResp({"error": "invalid_client", "error_description": "unknown client id"}),
        _FakeResp({"expires_in": 10}),
        _FakeResp({}, status_code=401),
        _FakeResp(ValueError("not json")),
    ],
)
def test_token_failures_degrade_to_offline(monkeypatch, response):
    _route(monkeypatch, {_CFG.baidu_token_url: response})
    assert VisionServiceClient(_CFG).acquire_token() == OFFLINE_TOKEN


def test_missing_credentials_never_reach_the_network(monkeypatch):
    def _unexpected(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(http_client_mod.requests, "post", _unexpected)
    client = VisionServiceClient(ServiceConfig(baidu_api_key="", baidu_secret_key=""))
    assert client.acquire_token() == OFFLINE_TOKEN


def test_ocr_returns_lines_in_order(monkeypatch):
    calls = _route(
        monkeypatch,
        {
            _CFG.baidu_ocr_url: _FakeResp(
                {"words_result_num": 3, "words_result": [{"words": "荆州古城"}, {"words": ""}, {"words": "东门"}]}
            )
        },
    )
    traced = VisionServiceClient(_CFG).detect_text_traced(_IMAGE, "tok")

    assert traced.value == ["荆州古城", "东门"]
    assert traced.degraded is False
    _, params, data = calls[0]
    assert params == {"access_token": "tok"}
    assert "image" in data


def test_ocr_with_no_words_is_not_a_failure(monkeypatch):
    _route(monkeypatch, {_CFG.baidu_ocr_url: _FakeResp({"words_result_num": 0, "words_result": []})})
    traced = VisionServiceClient(_CFG).detect_text_traced(_IMAGE, "tok")
    assert traced.value == []
    assert traced.degraded is False


def test_landmark_single_object_result(monkeypatch):
    _route(
        monkeypatch,
        {
            _CFG.baidu_landmark_url: _FakeResp(
                {"log_id": 1, "result": {"landmark": "荆州古城墙", "location": {"lat": 30.3602, "lng": 112.2095}}}
            )
        },
    )
    landmarks = VisionServiceClient(_CFG).recognize_landmarks(_IMAGE, "tok")

    assert len(landmarks) == 1
    assert landmarks[0].name == "荆州古城墙"
    assert landmarks[0].coordinate.lat == pytest.approx(30.3602)
    assert 0.0 <= landmarks[0].confidence <= 1.0


def test_landmark_list_is_sorted_and_address_kept_without_coordinate(monkeypatch):
    _route(
        monkeypatch,
        {
            _CFG.baidu_landmark_url: _FakeResp(
                {
                    "result": [
                        {"landmark": "荆州博物馆", "probability": 0.41, "location": "湖北省荆州市荆州区荆中路166号"},
                        {"landmark": "荆州古城墙", "probability": 0.87},
                        {"probability": 0.99},
                    ]
                }
            )
        },
    )
    landmarks = VisionServiceClient(_CFG).recognize_landmarks(_IMAGE, "tok")

    assert [lm.name for lm in landmarks] == ["荆州古城墙", "荆州博物馆"]
    museum = landmarks[1]
    assert museum.coordinate is None
    assert museum.address == "湖北省荆州市荆州区荆中路166号"
    assert museum.description == "位于湖北省荆州市荆州区荆中路166号"


def test_scene_picks_most_confident_label(monkeypatch):
    _route(
        monkeypatch,
        {
            _CFG.baidu_scene_url: _FakeResp(
                {"result": [{"keyword": "街道", "score": 0.3}, {"keyword": "古建筑", "score": 0.72}]}
            )
        },
    )
    scene = VisionServiceClient(_CFG).classify_scene(_IMAGE, "tok")
    assert scene.scene_label == "古建筑"
    assert scene.confidence == pytest.approx(0.72)


@pytest.mark.parametrize(
    "response",
    [
        _FakeResp({"error_code": 110, "error_msg": "Access token invalid or no longer valid"}),
        _FakeResp({"error_code": 216201, "error_msg": "image format error"}),
        _FakeResp({}, status_code=500),
        _FakeResp({"words_result": "garbled"}),
    ],
)
def test_ocr_failures_use_the_deterministic_fallback(monkeypatch, response):
    _route(monkeypatch, {_CFG.baidu_ocr_url: response})
    traced = VisionServiceClient(_CFG).detect_text_traced(_IMAGE, "tok")
    assert traced.value == fallback_text(_IMAGE)
    assert traced.degraded is True


@pytest.mark.parametrize(
    "payload",
    [
        {"result": [{"landmark": "荆州古城墙", "probability": 0.9, "baike_info": {"description": 123}}]},
        {"result": {"landmark": "荆州古城墙", "baike_info": {"description": ["城墙"]}}},
        {"error_code": [110], "error_msg": "weird"},
        {"error_code": "not-a-number"},
    ],
)
def test_badly_typed_landmark_replies_use_the_fallback(monkeypatch, payload):
    _route(monkeypatch, {_CFG.baidu_landmark_url: _FakeResp(payload)})
    traced = VisionServiceClient(_CFG).recognize_landmarks_traced(_IMAGE, "tok")
    assert traced.value == fallback_landmarks(_IMAGE)
    assert traced.degraded is True


def test_string_error_code_on_scene_uses_the_fallback(monkeypatch):
    _route(monkeypatch, {_CFG.baidu_scene_url: _FakeResp({"error_code": "111", "error_msg": "expired"})})
    traced = VisionServiceClient(_CFG).classify_scene_traced(_IMAGE, "tok")
    assert traced.value == fallback_scene(_IMAGE)
    assert traced.degraded is True


def test_network_error_on_landmarks_uses_fallback(monkeypatch):
    def _boom(*args, **kwargs):
        raise http_client_mod.requests.ConnectionError("down")

    monkeypatch.setattr(http_client_mod.requests, "post", _boom)
    traced = VisionServiceClient(_CFG).recognize_landmarks_traced(_IMAGE, "tok")
    assert traced.value == fallback_landmarks(_IMAGE)
    assert traced.degraded is True


def test_offline_config_makes_no_http_calls(monkeypatch):
    def _unexpected(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(http_client_mod.requests, "post", _unexpected)
    client = VisionServiceClient(ServiceConfig(offline=True))

    assert client.detect_text(_IMAGE) == fallback_text(_IMAGE)
    assert client.recognize_landmarks(_IMAGE) == fallback_landmarks(_IMAGE)
    assert client.classify_scene(_IMAGE) == fallback_scene(_IMAGE)
