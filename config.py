"""
Configuration for the ad extraction service

Settings are read from the environment (and an optional .env file) exactly once
at startup and then passed explicitly to every component that needs them.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Logging configuration
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Provider defaults
DEEPGRAM_BASE_URL = "https://api.deepgram.com"
DEEPGRAM_MODEL = "nova-3"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
GEMINI_MODEL = "gemini-2.0-flash"

# Processing defaults
EXTRACT_TIMEOUT_SECONDS = 300.0
PROVIDER_TIMEOUT_SECONDS = 120.0
TRANSCRIPT_CHUNK_SECONDS = 3.0
KEYFRAME_FETCH_TIMEOUT_SECONDS = 30.0
STORAGE_CONNECT_TIMEOUT_SECONDS = 5.0
STORAGE_READ_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class Settings:
    # R2 / S3
    r2_endpoint_url: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket: str = "entropy-frames"
    r2_region: str = "auto"

    # API keys
    deepgram_api_key: str = ""
    gemini_api_key: str = ""

    # Providers
    deepgram_base_url: str = DEEPGRAM_BASE_URL
    deepgram_model: str = DEEPGRAM_MODEL
    gemini_base_url: str = GEMINI_BASE_URL
    gemini_model: str = GEMINI_MODEL

    # Processing
    extract_timeout_seconds: float = EXTRACT_TIMEOUT_SECONDS
    provider_timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS
    transcript_chunk_seconds: float = TRANSCRIPT_CHUNK_SECONDS
    keyframe_fetch_timeout_seconds: float = KEYFRAME_FETCH_TIMEOUT_SECONDS
    storage_connect_timeout_seconds: float = STORAGE_CONNECT_TIMEOUT_SECONDS
    storage_read_timeout_seconds: float = STORAGE_READ_TIMEOUT_SECONDS

    # Server
    port: int = 8080
    log_level: str = LOG_LEVEL

    @property
    def transcript_enabled(self) -> bool:
        return bool(self.deepgram_api_key)

    @property
    def visual_enabled(self) -> bool:
        return bool(self.gemini_api_key)


def _getenv(key: str, fallback: str) -> str:
    value = os.getenv(key)
    return value if value else fallback


def _getenv_float(key: str, fallback: float) -> float:
    raw = os.getenv(key)
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e


def load_settings() -> Settings:
    """
    Build the process-wide settings from environment variables

    Returns:
        Immutable Settings instance
    """
    load_dotenv()

    return Settings(
        r2_endpoint_url=_getenv("R2_ENDPOINT_URL", ""),
        r2_access_key_id=_getenv("R2_ACCESS_KEY_ID", ""),
        r2_secret_access_key=_getenv("R2_SECRET_ACCESS_KEY", ""),
        r2_bucket=_getenv("R2_BUCKET", "entropy-frames"),
        r2_region=_getenv("R2_REGION", "auto"),
        deepgram_api_key=_getenv("DEEPGRAM_API_KEY", ""),
        gemini_api_key=_getenv("GEMINI_API_KEY", ""),
        deepgram_base_url=_getenv("DEEPGRAM_BASE_URL", DEEPGRAM_BASE_URL).rstrip("/"),
        deepgram_model=_getenv("DEEPGRAM_MODEL", DEEPGRAM_MODEL),
        gemini_base_url=_getenv("GEMINI_BASE_URL", GEMINI_BASE_URL).rstrip("/"),
        gemini_model=_getenv("GEMINI_MODEL", GEMINI_MODEL),
        extract_timeout_seconds=_getenv_float("EXTRACT_TIMEOUT_SECONDS", EXTRACT_TIMEOUT_SECONDS),
        provider_timeout_seconds=_getenv_float("PROVIDER_TIMEOUT_SECONDS", PROVIDER_TIMEOUT_SECONDS),
        transcript_chunk_seconds=_getenv_float("TRANSCRIPT_CHUNK_SECONDS", TRANSCRIPT_CHUNK_SECONDS),
        keyframe_fetch_timeout_seconds=_getenv_float(
            "KEYFRAME_FETCH_TIMEOUT_SECONDS", KEYFRAME_FETCH_TIMEOUT_SECONDS),
        storage_connect_timeout_seconds=_getenv_float(
            "STORAGE_CONNECT_TIMEOUT_SECONDS", STORAGE_CONNECT_TIMEOUT_SECONDS),
        storage_read_timeout_seconds=_getenv_float(
            "STORAGE_READ_TIMEOUT_SECONDS", STORAGE_READ_TIMEOUT_SECONDS),
        port=int(_getenv_float("PORT", 8080)),
        log_level=_getenv("LOG_LEVEL", LOG_LEVEL).upper(),
    )
