from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from . import http_client
from .config import POI_TYPE_CODES, ServiceConfig
from .contracts import GeoPoint, PlaceOfInterest, Traced
from .errors import AuthError, MalformedResponseError, ServiceError
from .logger import get_logger

logger = get_logger(__name__)

RawCoordinate = Union[str, Mapping[str, Any], None]

# Amap infocodes for key/permission problems.
_AUTH_INFOCODES = {"10001", "10003", "10005", "10006", "10009", "10010", "10012"}


def parse_coordinate(raw: RawCoordinate) -> Optional[GeoPoint]:
    """
    Normalize a packed "lng,lat" string or a {lat, lng} mapping into a GeoPoint.

    Anything unparseable, non-finite or out of range returns None; callers drop
    the record instead of inventing (0, 0).
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        parts = raw.split(",")
        if len(parts) != 2:
            return None
        lng_raw, lat_raw = parts
    elif isinstance(raw, Mapping):
        lat_raw, lng_raw = raw.get("lat"), raw.get("lng")
    else:
        return None
    try:
        lat, lng = float(lat_raw), float(lng_raw)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    try:
        return GeoPoint(lat=lat, lng=lng)
    except ValidationError:
        return None


def _text(value: Any) -> Optional[str]:
    # Amap encodes empty fields as [].
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _parse_poi(item: Any) -> Optional[PlaceOfInterest]:
    if not isinstance(item, dict):
        return None
    name = _text(item.get("name"))
    raw_coord = item.get("location")
    if raw_coord is None and "lat" in item and "lng" in item:
        raw_coord = {"lat": item.get("lat"), "lng": item.get("lng")}
    coordinate = parse_coordinate(raw_coord)
    if name is None or coordinate is None:
        logger.debug("dropping poi", name=name, location=raw_coord)
        return None
    biz_ext = item.get("biz_ext")
    opened = _text(biz_ext.get("openday")) if isinstance(biz_ext, dict) else None
    return PlaceOfInterest(
        name=name,
        address=_text(item.get("address")) or "",
        coordinate=coordinate,
        category=_text(item.get("type")) or "",
        city=_text(item.get("cityname")),
        district=_text(item.get("adname")) or _text(item.get("district")),
        opened=opened,
    )


class PlaceSearchClient:
    """Amap-style keyword and radius POI search; failures yield no POIs."""

    def __init__(self, config: ServiceConfig) -> None:
        self.config = config

    def _search(self, path: str, params: Dict[str, Any], operation: str) -> List[PlaceOfInterest]:
        data = http_client.get_json(
            f"{self.config.amap_base_url.rstrip('/')}{path}",
            params={"key": self.config.amap_key, **params},
            timeout=self.config.timeout_s,
            operation=operation,
        )
        if str(data.get("status")) != "1":
            info = str(data.get("info", ""))
            if str(data.get("infocode", "")) in _AUTH_INFOCODES:
                raise AuthError(operation, info)
            raise MalformedResponseError(operation, f"status={data.get('status')} {info}".strip())
        raw = data.get("pois") or []
        if not isinstance(raw, list):
            raise MalformedResponseError(operation, "pois is not a list")
        return [poi for poi in (_parse_poi(item) for item in raw) if poi is not None]

    def _absorb(self, operation: str, fn) -> Traced[List[PlaceOfInterest]]:
        try:
            return Traced(fn(), degraded=False)
        except ServiceError as e:
            logger.warning("place search failed", operation=operation, reason=e.reason.value, detail=e.detail)
            return Traced([], degraded=True)

    def search_by_keywords_traced(
        self, keywords: Iterable[str], city_filter: Optional[str] = None
    ) -> Traced[List[PlaceOfInterest]]:
        terms = list(dict.fromkeys(k.strip() for k in keywords if k and k.strip()))
        if not terms:
            return Traced([], degraded=False)
        params: Dict[str, Any] = {
            "keywords": "|".join(terms),
            "types": POI_TYPE_CODES,
            "offset": 20,
            "page": 1,
            "extensions": "all",
        }
        if city_filter:
            params["city"] = city_filter
            params["citylimit"] = "true"
        return self._absorb("search_by_keywords", lambda: self._search("/v3/place/text", params, "search_by_keywords"))

    def search_by_keywords(self, keywords: Iterable[str], city_filter: Optional[str] = None) -> List[PlaceOfInterest]:
        return self.search_by_keywords_traced(keywords, city_filter).value

    def search_around_traced(self, center: Tuple[float, float], radius_meters: float) -> Traced[List[PlaceOfInterest]]:
        lat, lng = center
        params = {
            "location": f"{lng},{lat}",
            "radius": int(radius_meters),
            "types": POI_TYPE_CODES,
            "offset": 10,
            "page": 1,
            "extensions": "all",
        }
        return self._absorb("search_around", lambda: self._search("/v3/place/around", params, "search_around"))

    def search_around(self, center: Tuple[float, float], radius_meters: float) -> List[PlaceOfInterest]:
        return self.search_around_traced(center, radius_meters).value
