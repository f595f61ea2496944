from __future__ import annotations

from typing import Optional

from .config import TARGET_AREA_NAME, UNKNOWN_REGION, UNRESOLVED_LOCATION
from .contracts import LocationInferenceResult, TriState


def _match_grade(confidence: float) -> str:
    if confidence > 0.9:
        return "高度匹配"
    if confidence > 0.7:
        return "中度匹配"
    return "初步匹配"


def describe_result(result: LocationInferenceResult, original_description: Optional[str] = None) -> str:
    """
    User-facing one-liner for an inference result.

    `original_description` is a caller-side guess used when the pipeline could
    not name a place.
    """
    name = result.location.name
    resolved = name != UNRESOLVED_LOCATION

    if result.is_target_region == TriState.TRUE:
        if not resolved:
            return f"{original_description}（{TARGET_AREA_NAME}）" if original_description else f"{TARGET_AREA_NAME}（具体位置待确认）"
        parts = [f"{name}（{_match_grade(result.location.confidence)}）"]
        if result.landmarks and result.landmarks[0].name != name:
            parts.append(f"附近有{result.landmarks[0].name}")
        if result.region and result.region != UNKNOWN_REGION:
            parts.append(f"位于{result.region}")
        return "，".join(parts)

    subject = name if resolved else (original_description or "无法确定地点")
    if result.is_target_region == TriState.FALSE:
        return f"{subject}（非{TARGET_AREA_NAME}）"
    return f"{subject}（无法确定是否位于{TARGET_AREA_NAME}）"
