"""
Configuration loader for bbreview.

Settings come from an optional .env file (parsed without shell execution)
overlaid with the process environment. Process environment wins.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from . import envparse
from bbreview.lib.delivery import DeliveryOptions, RateLimiter
from bbreview.lib.retry import RetryPolicy
from bbreview.lib.suggestions import ValidationOptions

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.bitbucket.org/2.0"
DEFAULT_TOKEN_URL = "https://bitbucket.org/site/oauth2/access_token"

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class ServiceConfig:
    """Service settings. Durations in seconds unless the field says otherwise."""
    client_id: str = ""
    client_secret: str = ""
    webhook_secret: str = ""  # Empty disables signature verification
    api_url: str = DEFAULT_API_URL
    token_url: str = DEFAULT_TOKEN_URL

    enable_describe: bool = False
    enable_review: bool = False
    enable_inline: bool = False

    max_desc_append_chars: int = 2500
    max_inline_comments: int = 10
    max_concurrent: int = 3
    min_delay_ms: int = 200

    retry_max_retries: int = 3
    retry_initial_delay_ms: int = 1000
    retry_max_delay_ms: int = 10000
    retry_multiplier: float = 2.0

    post_timeout: float = 30.0
    http_timeout: float = 30.0
    generate_timeout: int = 300

    strict_line_validation: bool = True
    dedupe_inline_per_line: bool = False

    agents_config_dir: Optional[Path] = None
    port: int = 8080
    log_level: str = "INFO"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max_retries,
            initial_delay=self.retry_initial_delay_ms / 1000,
            max_delay=self.retry_max_delay_ms / 1000,
            multiplier=self.retry_multiplier,
        )

    def delivery_options(self) -> DeliveryOptions:
        return DeliveryOptions(
            max_items=self.max_inline_comments,
            call_timeout=self.post_timeout,
            retry=self.retry_policy(),
        )

    def validation_options(self) -> ValidationOptions:
        return ValidationOptions(
            strict_lines=self.strict_line_validation,
            dedupe_per_line=self.dedupe_inline_per_line,
        )

    def new_rate_limiter(self) -> RateLimiter:
        """A fresh limiter; each PR run owns its own."""
        return RateLimiter(max_concurrent=self.max_concurrent, min_delay=self.min_delay_ms / 1000)


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid {key} '{value}', using default {default}")
        return default


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid {key} '{value}', using default {default}")
        return default


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key, "").strip().lower()
    if not value:
        return default
    return value in TRUE_VALUES


def load_service_config(
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServiceConfig:
    """Load ServiceConfig from an optional env file plus the environment.

    Raises:
        FileNotFoundError: if env_file is given but doesn't exist
        ValueError: if env_file has invalid syntax
    """
    env: dict[str, str] = {}
    if env_file is not None:
        env.update(envparse.load_env(env_file))
    env.update(os.environ if environ is None else environ)

    agents_dir = env.get("AGENTS_CONFIG_DIR", "").strip()

    return ServiceConfig(
        client_id=env.get("BB_CLIENT_ID", ""),
        client_secret=env.get("BB_CLIENT_SECRET", ""),
        webhook_secret=env.get("WEBHOOK_SECRET", ""),
        api_url=env.get("BITBUCKET_API_URL", DEFAULT_API_URL).rstrip("/"),
        token_url=env.get("BITBUCKET_TOKEN_URL", DEFAULT_TOKEN_URL),
        enable_describe=_get_bool(env, "ENABLE_DESCRIBE", False),
        enable_review=_get_bool(env, "ENABLE_REVIEW", False),
        enable_inline=_get_bool(env, "ENABLE_INLINE", False),
        max_desc_append_chars=_get_int(env, "MAX_DESC_APPEND_CHARS", 2500),
        max_inline_comments=max(0, _get_int(env, "MAX_INLINE_COMMENTS", 10)),
        max_concurrent=max(1, _get_int(env, "INLINE_MAX_CONCURRENT", 3)),
        min_delay_ms=_get_int(env, "INLINE_MIN_DELAY_MS", 200),
        retry_max_retries=_get_int(env, "RETRY_MAX_RETRIES", 3),
        retry_initial_delay_ms=_get_int(env, "RETRY_INITIAL_DELAY_MS", 1000),
        retry_max_delay_ms=_get_int(env, "RETRY_MAX_DELAY_MS", 10000),
        retry_multiplier=_get_float(env, "RETRY_MULTIPLIER", 2.0),
        post_timeout=_get_float(env, "POST_TIMEOUT_SECONDS", 30.0),
        http_timeout=_get_float(env, "HTTP_TIMEOUT_SECONDS", 30.0),
        generate_timeout=_get_int(env, "GENERATE_TIMEOUT_SECONDS", 300),
        strict_line_validation=_get_bool(env, "STRICT_LINE_VALIDATION", True),
        dedupe_inline_per_line=_get_bool(env, "DEDUPE_INLINE_PER_LINE", False),
        agents_config_dir=Path(agents_dir) if agents_dir else None,
        port=_get_int(env, "PORT", 8080),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
