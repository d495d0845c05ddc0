"""
Settings loaded from the environment (and an optional .env file).

Recognised variables:
    AWS_REGION, AWS_PROFILE, AWS_ENDPOINT_URL, KMS_KEY_ID,
    ENVELOPE_AAD_TAG, S3_BUCKET, ZSTD_LEVEL, LOG_LEVEL
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_AAD_TAG = "kms-envelope"
DEFAULT_ZSTD_LEVEL = 3


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the KMS, S3 and compression layers."""

    region: Optional[str] = None
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None
    kms_key_id: Optional[str] = None
    aad_tag: str = DEFAULT_AAD_TAG
    s3_bucket: Optional[str] = None
    zstd_level: int = DEFAULT_ZSTD_LEVEL
    log_level: str = "INFO"

    def require(self, name: str) -> str:
        """
        Return a setting that must be present.

        Raises:
            ConfigError: If the setting is unset or empty
        """
        value = getattr(self, name, None)
        if value is None or value == "":
            raise ConfigError(f"Missing required setting: {name}")
        return value


def _parse_zstd_level(raw: Optional[str]) -> int:
    if raw is None or raw.strip() == "":
        return DEFAULT_ZSTD_LEVEL
    try:
        level = int(raw)
    except ValueError:
        raise ConfigError(f"ZSTD_LEVEL must be an integer, got {raw!r}")
    if not 1 <= level <= 22:
        raise ConfigError(f"ZSTD_LEVEL must be between 1 and 22, got {level}")
    return level


def load_settings(env_path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load settings from the process environment.

    Args:
        env_path: Optional .env file; values already set in the
            environment take precedence.

    Returns:
        Settings instance

    Raises:
        ConfigError: If a value is present but invalid
    """
    if env_path is not None:
        load_dotenv(env_path)
    else:
        load_dotenv()

    return Settings(
        region=os.environ.get("AWS_REGION") or None,
        profile=os.environ.get("AWS_PROFILE") or None,
        endpoint_url=os.environ.get("AWS_ENDPOINT_URL") or None,
        kms_key_id=os.environ.get("KMS_KEY_ID") or None,
        aad_tag=os.environ.get("ENVELOPE_AAD_TAG") or DEFAULT_AAD_TAG,
        s3_bucket=os.environ.get("S3_BUCKET") or None,
        zstd_level=_parse_zstd_level(os.environ.get("ZSTD_LEVEL")),
        log_level=(os.environ.get("LOG_LEVEL") or "INFO").upper(),
    )
