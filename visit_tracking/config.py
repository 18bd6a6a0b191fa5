"""
Tracker configuration.

Defaults mirror the storefront client's constants; every tunable can be
overridden from the environment through `TrackerConfig.from_env()`.
"""

import logging
import os
from typing import Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "http://backend.test/api/v1"
DEFAULT_STORAGE_KEY = "visit_tracking_session"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class TrackerConfig(BaseModel):
    """Configuration for the tracking pipeline"""
    api_base: str = DEFAULT_API_BASE

    # Retry policy
    max_retries: int = Field(default=3, ge=0)
    retry_delay_base: float = Field(default=1.0, gt=0)  # seconds

    # Queues
    max_queue_size: int = Field(default=100, ge=1)
    pixel_high_water_mark: int = Field(default=10, ge=1)

    # Deduplication
    visit_cooldown: float = Field(default=30.0, ge=0)  # seconds
    excluded_path_prefixes: Tuple[str, ...] = ("/admin",)

    # Scheduling
    dispatch_interval: float = Field(default=30.0, gt=0)
    checkpoint_interval: float = Field(default=60.0, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)

    storage_key: str = DEFAULT_STORAGE_KEY
    enabled: bool = True

    @field_validator("api_base")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    def retry_delay(self, retry_count: int) -> float:
        """Backoff delay before re-inserting a record that failed `retry_count` times before"""
        return self.retry_delay_base * (2 ** retry_count)

    @classmethod
    def from_env(cls, **overrides) -> "TrackerConfig":
        """
        Build a config from VISIT_TRACKING_* environment variables

        Malformed or out-of-range environment values are logged and replaced
        by the default. Invalid explicit overrides still raise.

        Args:
            **overrides: Explicit values that win over the environment

        Returns:
            Validated TrackerConfig
        """
        env_map = {
            "api_base": ("VISIT_TRACKING_API", str),
            "max_retries": ("VISIT_TRACKING_MAX_RETRIES", int),
            "retry_delay_base": ("VISIT_TRACKING_RETRY_DELAY", float),
            "max_queue_size": ("VISIT_TRACKING_MAX_QUEUE_SIZE", int),
            "pixel_high_water_mark": ("VISIT_TRACKING_PIXEL_HIGH_WATER", int),
            "visit_cooldown": ("VISIT_TRACKING_COOLDOWN", float),
            "dispatch_interval": ("VISIT_TRACKING_DISPATCH_INTERVAL", float),
            "checkpoint_interval": ("VISIT_TRACKING_CHECKPOINT_INTERVAL", float),
            "request_timeout": ("VISIT_TRACKING_TIMEOUT", float),
            "enabled": ("VISIT_TRACKING_ENABLED", _env_bool),
        }

        values = {}
        for field_name, (env_name, cast) in env_map.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = cast(raw)
            except ValueError:
                logger.warning(f"Ignoring malformed {env_name}={raw!r}, using the default")

        try:
            return cls(**{**values, **overrides})
        except ValidationError as e:
            rejected = {
                error["loc"][0] for error in e.errors()
                if error["loc"] and error["loc"][0] in values and error["loc"][0] not in overrides
            }
            if not rejected:
                raise
            for field_name in rejected:
                env_name = env_map[field_name][0]
                logger.warning(f"Ignoring out-of-range {env_name}={values.pop(field_name)!r}, using the default")

        return cls(**{**values, **overrides})
