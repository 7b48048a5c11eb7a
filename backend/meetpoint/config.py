"""Runtime configuration.

Every setting comes from the environment (``.env`` is loaded when present).
Provider API keys are optional: a provider without a key is left out of its
fallback chain rather than failing at startup.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _list_env(name: str, default: list[str]) -> list[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class RateLimitQuota:
    """Requests allowed per sliding window for one caller class."""
    requests: int
    window_seconds: float


@dataclass
class Settings:
    locationiq_api_key: str | None = None
    ors_api_key: str | None = None
    here_api_key: str | None = None
    redis_url: str | None = None

    cache_ttl_seconds: int = 86400  # addresses and routes rarely change
    http_timeout_seconds: float = 10.0
    http_max_attempts: int = 3
    http_retry_base_seconds: float = 0.5
    http_retry_max_seconds: float = 8.0

    rate_limits: dict[str, RateLimitQuota] = field(default_factory=lambda: {
        "anonymous": RateLimitQuota(requests=60, window_seconds=60),
        "authenticated": RateLimitQuota(requests=300, window_seconds=60),
        "privileged": RateLimitQuota(requests=1000, window_seconds=60),
    })

    default_poi_radius: int = 1500
    poi_limit_per_anchor: int = 8
    max_origins: int = 10

    user_agent: str = "Meetpoint/1.0 (contact@meetpoint.app)"
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:5173",
    ])

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        rate_limits = {}
        for caller_class, quota in defaults.rate_limits.items():
            prefix = f"RATE_LIMIT_{caller_class.upper()}"
            rate_limits[caller_class] = RateLimitQuota(
                requests=_int_env(f"{prefix}_REQUESTS", quota.requests),
                window_seconds=_float_env(f"{prefix}_WINDOW", quota.window_seconds),
            )

        return cls(
            locationiq_api_key=os.getenv("LOCATIONIQ_API_KEY") or None,
            ors_api_key=os.getenv("ORS_API_KEY") or None,
            here_api_key=os.getenv("HERE_API_KEY") or None,
            redis_url=os.getenv("REDIS_URL") or None,
            cache_ttl_seconds=_int_env("CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
            http_timeout_seconds=_float_env("HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds),
            http_max_attempts=_int_env("HTTP_MAX_ATTEMPTS", defaults.http_max_attempts),
            http_retry_base_seconds=_float_env("HTTP_RETRY_BASE_SECONDS", defaults.http_retry_base_seconds),
            http_retry_max_seconds=_float_env("HTTP_RETRY_MAX_SECONDS", defaults.http_retry_max_seconds),
            rate_limits=rate_limits,
            default_poi_radius=_int_env("DEFAULT_POI_RADIUS", defaults.default_poi_radius),
            poi_limit_per_anchor=_int_env("POI_LIMIT_PER_ANCHOR", defaults.poi_limit_per_anchor),
            max_origins=_int_env("MAX_ORIGINS", defaults.max_origins),
            user_agent=os.getenv("USER_AGENT") or defaults.user_agent,
            cors_origins=_list_env("CORS_ORIGINS", defaults.cors_origins),
        )
