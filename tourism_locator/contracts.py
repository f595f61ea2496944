from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TriState(str, Enum):
    """Whether the photo shows the target region. UNKNOWN is not FALSE."""

    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"


class Resolution(str, Enum):
    RESOLVED = "resolved"
    FALLBACK = "fallback"
    OUTAGE = "outage"


T = TypeVar("T")


@dataclass(frozen=True)
class Traced(Generic[T]):
    """A client result plus whether it came from a fallback path."""

    value: T
    degraded: bool


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class GeoPoint(_Frozen):
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


class RecognizedLandmark(_Frozen):
    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    coordinate: Optional[GeoPoint] = None
    address: Optional[str] = None
    description: Optional[str] = None


class SceneClassification(_Frozen):
    scene_label: str
    confidence: float = Field(ge=0.0, le=1.0)


class PlaceOfInterest(_Frozen):
    name: str
    address: str = ""
    coordinate: GeoPoint
    category: str = ""
    city: Optional[str] = None
    district: Optional[str] = None
    opened: Optional[str] = None


class Location(_Frozen):
    name: str
    address: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    confidence: float

    @field_validator("confidence")
    @classmethod
    def _bounded(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)


class LandmarkEntry(_Frozen):
    name: str
    confidence: float
    description: str = ""


class BuildingEntry(_Frozen):
    name: str
    type: str
    confidence: float
    age: Optional[str] = None


class LocationInferenceResult(_Frozen):
    location: Location
    landmarks: List[LandmarkEntry] = Field(default_factory=list)
    buildings: List[BuildingEntry] = Field(default_factory=list)
    region: str
    is_target_region: TriState = TriState.UNKNOWN
    resolution: Resolution = Resolution.OUTAGE

    @field_validator("landmarks", "buildings")
    @classmethod
    def _ranked(cls, v: list) -> list:
        return sorted(v, key=lambda item: item.confidence, reverse=True)


class ColorShare(_Frozen):
    color: str
    percentage: float


class DetectedObject(_Frozen):
    name: str
    confidence: float


class ImageFeatures(_Frozen):
    """Coarse visual signature used by the geo-mapping similarity lookup."""

    dominant_colors: List[ColorShare] = Field(default_factory=list)
    scene_type: str = ""
    objects: List[DetectedObject] = Field(default_factory=list)
    symmetry_score: Optional[float] = None
    contrast: Optional[float] = None


class GeoLocation(_Frozen):
    lat: float
    lng: float
    name: str
    address: Optional[str] = None
    category: Optional[str] = None


class GeoMapping(_Frozen):
    id: int
    image_features: ImageFeatures
    geo_location: GeoLocation
    confidence: float
    timestamp: float
    image_id: Optional[str] = None
