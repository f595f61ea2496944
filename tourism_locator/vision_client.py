from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError

from . import http_client
from .config import OFFLINE_TOKEN, ServiceConfig
from .contracts import RecognizedLandmark, SceneClassification, Traced
from .errors import AuthError, MalformedResponseError, ServiceError
from .fallback import fallback_landmarks, fallback_scene, fallback_text
from .io import image_to_base64
from .logger import get_logger
from .place_client import parse_coordinate

logger = get_logger(__name__)

T = TypeVar("T")

# Baidu: 110 = invalid token, 111 = expired token, 14 = IAM certification failed.
_AUTH_ERROR_CODES = {14, 110, 111}


def _check_provider_error(data: Dict[str, Any], operation: str) -> None:
    code = data.get("error_code")
    if code is None:
        return
    msg = str(data.get("error_msg", ""))
    try:
        auth_failure = int(code) in _AUTH_ERROR_CODES
    except (TypeError, ValueError, OverflowError):
        auth_failure = False
    if auth_failure:
        raise AuthError(operation, msg)
    raise MalformedResponseError(operation, f"error_code={code} {msg}".strip())


def _probability(item: Dict[str, Any]) -> float:
    raw = item.get("probability", item.get("score"))
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.5
    if not math.isfinite(value):
        return 0.5
    return min(max(value, 0.0), 1.0)


def _parse_landmark(item: Any) -> Optional[RecognizedLandmark]:
    if not isinstance(item, dict):
        return None
    name = item.get("landmark") or item.get("keyword")
    if not isinstance(name, str) or not name:
        return None

    location = item.get("location")
    address = location if isinstance(location, str) and location else None
    coordinate = parse_coordinate(location) if isinstance(location, dict) else None
    if coordinate is None and "lat" in item and "lng" in item:
        coordinate = parse_coordinate({"lat": item.get("lat"), "lng": item.get("lng")})

    baike = item.get("baike_info")
    description = baike.get("description") if isinstance(baike, dict) else None
    if not description and address:
        description = f"位于{address}"

    return RecognizedLandmark(
        name=name,
        confidence=_probability(item),
        coordinate=coordinate,
        address=address,
        description=description or None,
    )


class VisionServiceClient:
    """
    OCR, landmark recognition and scene recognition against Baidu-style
    endpoints. Public operations never raise: any ServiceError (or an offline
    token) routes straight to the deterministic fallback for the image.
    """

    def __init__(self, config: ServiceConfig) -> None:
        self.config = config

    # -- token ----------------------------------------------------------------

    def _fetch_token(self) -> str:
        if not (self.config.baidu_api_key and self.config.baidu_secret_key):
            raise AuthError("token", "missing credentials")
        data = http_client.post_form(
            self.config.baidu_token_url,
            data=None,
            params={
                "grant_type": "client_credentials",
                "client_id": self.config.baidu_api_key,
                "client_secret": self.config.baidu_secret_key,
            },
            timeout=self.config.timeout_s,
            operation="token",
        )
        if "error" in data:
            raise AuthError("token", str(data.get("error_description") or data["error"]))
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise MalformedResponseError("token", "no access_token in response")
        return token

    def acquire_token(self) -> str:
        """Bearer token, or OFFLINE_TOKEN when issuance is skipped or fails."""
        if self.config.offline:
            return OFFLINE_TOKEN
        try:
            return self._fetch_token()
        except ServiceError as e:
            logger.warning("token acquisition failed, going offline", reason=e.reason.value, detail=e.detail)
            return OFFLINE_TOKEN

    # -- shared plumbing --------------------------------------------------------

    def _recognize(self, url: str, image: bytes, token: str, operation: str, extra: Optional[dict] = None) -> Dict[str, Any]:
        data = http_client.post_form(
            url,
            data={"image": image_to_base64(image), **(extra or {})},
            params={"access_token": token},
            timeout=self.config.timeout_s,
            operation=operation,
        )
        _check_provider_error(data, operation)
        return data

    def _guarded(
        self,
        operation: str,
        image: bytes,
        token: Optional[str],
        call: Callable[[str], T],
        fallback: Callable[[bytes], T],
    ) -> Traced[T]:
        if token is None:
            token = self.acquire_token()
        if token == OFFLINE_TOKEN:
            logger.info("offline token, using fallback", operation=operation)
            return Traced(fallback(image), degraded=True)
        try:
            return Traced(call(token), degraded=False)
        except ServiceError as e:
            logger.warning("vision call failed, using fallback", operation=operation, reason=e.reason.value, detail=e.detail)
            return Traced(fallback(image), degraded=True)

    # -- OCR ------------------------------------------------------------------

    def _detect_text_once(self, image: bytes, token: str) -> List[str]:
        data = self._recognize(self.config.baidu_ocr_url, image, token, "detect_text")
        words = data.get("words_result")
        if words is None:
            return []
        if not isinstance(words, list):
            raise MalformedResponseError("detect_text", "words_result is not a list")
        return [w["words"] for w in words if isinstance(w, dict) and isinstance(w.get("words"), str) and w["words"]]

    def detect_text_traced(self, image: bytes, token: Optional[str] = None) -> Traced[List[str]]:
        return self._guarded("detect_text", image, token, lambda t: self._detect_text_once(image, t), fallback_text)

    def detect_text(self, image: bytes, token: Optional[str] = None) -> List[str]:
        return self.detect_text_traced(image, token).value

    # -- landmarks ------------------------------------------------------------

    def _recognize_landmarks_once(self, image: bytes, token: str) -> List[RecognizedLandmark]:
        data = self._recognize(self.config.baidu_landmark_url, image, token, "recognize_landmarks", {"baike_num": 1})
        raw = data.get("result")
        if raw is None:
            return []
        if isinstance(raw, dict):
            raw = [raw]
        if not isinstance(raw, list):
            raise MalformedResponseError("recognize_landmarks", "result is neither list nor object")
        try:
            parsed = [lm for lm in (_parse_landmark(item) for item in raw) if lm is not None]
        except (ValidationError, TypeError, ValueError) as e:
            raise MalformedResponseError("recognize_landmarks", f"bad landmark record: {type(e).__name__}") from e
        return sorted(parsed, key=lambda lm: lm.confidence, reverse=True)

    def recognize_landmarks_traced(self, image: bytes, token: Optional[str] = None) -> Traced[List[RecognizedLandmark]]:
        return self._guarded(
            "recognize_landmarks",
            image,
            token,
            lambda t: self._recognize_landmarks_once(image, t),
            fallback_landmarks,
        )

    def recognize_landmarks(self, image: bytes, token: Optional[str] = None) -> List[RecognizedLandmark]:
        return self.recognize_landmarks_traced(image, token).value

    # -- scene ----------------------------------------------------------------

    def _classify_scene_once(self, image: bytes, token: str) -> Optional[SceneClassification]:
        data = self._recognize(self.config.baidu_scene_url, image, token, "classify_scene")
        raw = data.get("result") or []
        if not isinstance(raw, list):
            raise MalformedResponseError("classify_scene", "result is not a list")
        scenes = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            label = item.get("scene_name") or item.get("keyword")
            if not (isinstance(label, str) and label):
                continue
            try:
                scenes.append(SceneClassification(scene_label=label, confidence=_probability(item)))
            except ValidationError as e:
                raise MalformedResponseError("classify_scene", f"bad scene record: {label}") from e
        if not scenes:
            return None
        return max(scenes, key=lambda s: s.confidence)

    def classify_scene_traced(self, image: bytes, token: Optional[str] = None) -> Traced[Optional[SceneClassification]]:
        return self._guarded(
            "classify_scene",
            image,
            token,
            lambda t: self._classify_scene_once(image, t),
            fallback_scene,
        )

    def classify_scene(self, image: bytes, token: Optional[str] = None) -> Optional[SceneClassification]:
        return self.classify_scene_traced(image, token).value
