from __future__ import annotations

import os
from typing import Tuple

from pydantic import BaseModel, ConfigDict

# Target region: Jingzhou old town (Hubei). Keep place data centralized here.
TARGET_CITY = "荆州市"
TARGET_CITY_SHORT = "荆州"
TARGET_AREA_NAME = "荆州地区"
TARGET_AREA_ADDRESS = "湖北省荆州市"
TARGET_CENTER: Tuple[float, float] = (30.3602, 112.2095)  # (lat, lng)
AROUND_RADIUS_M = 5000

# Tier 1: named core landmarks. Tier 2: broader historically-adjacent keywords.
TIER1_KEYWORDS = frozenset(
    {
        "荆州古城",
        "荆州古城墙",
        "荆州城墙",
        "荆州博物馆",
        "张居正故居",
        "章华寺",
        "楚王车马阵",
        "熊家冢",
        "jingzhou ancient city",
    }
)
TIER2_KEYWORDS = frozenset(
    {
        "荆州",
        "湖北",
        "古城",
        "城墙",
        "楚",
        "三国",
        "沙市",
        "jingzhou",
    }
)
TIER1_INCREMENT = 0.6
TIER2_INCREMENT = 0.3

# Evidence accumulation. Reliability order: text > landmark > POI.
BASE_CONFIDENCE = 0.1
TARGET_THRESHOLD = 0.5
TEXT_WEIGHT = 0.35
LANDMARK_WEIGHT = 0.3
SCENE_WEIGHT = 0.1
POI_PRESENCE_INCREMENT = 0.05
POI_RELEVANCE_WEIGHT = 0.15

# POI relevance: name containment vs. category.
POI_NAME_WEIGHT = 0.8
POI_CATEGORY_WEIGHT = 0.2
HERITAGE_CATEGORIES = ("文化古迹", "风景名胜", "旅游景点", "博物馆", "纪念馆")
# Amap type codes: cultural relics, scenic spots, tourist attractions.
POI_TYPE_CODES = "150700|150800|090100"

MAX_POI_LANDMARKS = 5
MAX_POI_BUILDINGS = 3
STRUCTURE_SUFFIXES = ("城墙", "寺", "博物馆", "故居", "塔", "楼", "门", "宫", "庙", "祠")

UNRESOLVED_LOCATION = "未知位置"
UNRESOLVED_ADDRESS = "无法确定"
UNKNOWN_REGION = "未知区域"

FALLBACK_HASH_PREFIX = 100
FALLBACK_BUCKETS = 3

GEO_MAPPING_CAPACITY = 1000

OFFLINE_TOKEN = "offline"

# Demo placeholders; rejected by validate_for_production().
DEMO_BAIDU_KEY = "demo-baidu-key"
DEMO_BAIDU_SECRET = "demo-baidu-secret"
DEMO_AMAP_KEY = "demo-amap-key"
_PLACEHOLDERS = frozenset({DEMO_BAIDU_KEY, DEMO_BAIDU_SECRET, DEMO_AMAP_KEY})


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class ServiceConfig(BaseModel):
    """Endpoints, credentials and timeouts for every outbound call."""

    model_config = ConfigDict(frozen=True)

    baidu_api_key: str = DEMO_BAIDU_KEY
    baidu_secret_key: str = DEMO_BAIDU_SECRET
    amap_key: str = DEMO_AMAP_KEY

    baidu_token_url: str = "https://aip.baidubce.com/oauth/2.0/token"
    baidu_ocr_url: str = "https://aip.baidubce.com/rest/2.0/ocr/v1/general_basic"
    baidu_landmark_url: str = "https://aip.baidubce.com/rest/2.0/image-classify/v1/landmark"
    baidu_scene_url: str = "https://aip.baidubce.com/rest/2.0/image-classify/v1/scene"
    amap_base_url: str = "https://restapi.amap.com"

    timeout_s: float = 10.0
    deadline_s: float = 15.0
    offline: bool = False
    environment: str = "DEV"

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        return cls(
            baidu_api_key=os.getenv("BAIDU_API_KEY", DEMO_BAIDU_KEY),
            baidu_secret_key=os.getenv("BAIDU_SECRET_KEY", DEMO_BAIDU_SECRET),
            amap_key=os.getenv("AMAP_KEY", DEMO_AMAP_KEY),
            baidu_token_url=os.getenv("BAIDU_TOKEN_URL", cls.model_fields["baidu_token_url"].default),
            baidu_ocr_url=os.getenv("BAIDU_OCR_URL", cls.model_fields["baidu_ocr_url"].default),
            baidu_landmark_url=os.getenv("BAIDU_LANDMARK_URL", cls.model_fields["baidu_landmark_url"].default),
            baidu_scene_url=os.getenv("BAIDU_SCENE_URL", cls.model_fields["baidu_scene_url"].default),
            amap_base_url=os.getenv("AMAP_BASE_URL", cls.model_fields["amap_base_url"].default).rstrip("/"),
            timeout_s=_env_float("SERVICE_TIMEOUT_S", 10.0),
            deadline_s=_env_float("SERVICE_DEADLINE_S", 15.0),
            offline=_env_flag("VISION_OFFLINE"),
            environment=os.getenv("APP_ENVIRONMENT", "DEV"),
        )

    @property
    def is_production(self) -> bool:
        return self.environment.upper() == "PROD"

    def placeholder_credentials(self) -> list[str]:
        creds = {
            "BAIDU_API_KEY": self.baidu_api_key,
            "BAIDU_SECRET_KEY": self.baidu_secret_key,
            "AMAP_KEY": self.amap_key,
        }
        return [name for name, value in creds.items() if not value or value in _PLACEHOLDERS]

    def validate_for_production(self) -> None:
        """Refuse to run a production deployment on demo credentials."""
        if not self.is_production:
            return
        missing = self.placeholder_credentials()
        if missing:
            raise ValueError(f"Placeholder credentials in production: {', '.join(missing)}")
        if self.offline:
            raise ValueError("VISION_OFFLINE must not be enabled in production")

