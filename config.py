"""Runtime settings, read from the environment (.env is loaded by the entry points)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

BASE_DIR = Path(__file__).parent

DEFAULT_DB_PATH = BASE_DIR / "catalog.db"

DEFAULT_VISION_MODEL = "gpt-4o-mini"
DEFAULT_VISION_FALLBACK = "gpt-4o"
DEFAULT_TEXT_MODEL = "gpt-4o-mini"
DEFAULT_TEXT_FALLBACK = "gpt-4.1-mini"
DEFAULT_IMAGE_MODEL = "google/nano-banana"
DEFAULT_IMAGE_FALLBACK = "google/nano-banana-pro"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class Settings:
    db_path: Path = DEFAULT_DB_PATH

    # Orchestrator
    interval: float = 5.0          # seconds between ticks
    timeout: float = 600.0         # per-record wall-clock budget, from created_at
    max_retries: int = 3

    # Generation client
    text_provider: str = "openai"
    vision_model: str = DEFAULT_VISION_MODEL
    vision_fallback_model: str = DEFAULT_VISION_FALLBACK
    text_model: str = DEFAULT_TEXT_MODEL
    text_fallback_model: str = DEFAULT_TEXT_FALLBACK
    image_model: str = DEFAULT_IMAGE_MODEL
    image_fallback_model: str = DEFAULT_IMAGE_FALLBACK

    openai_api_key: str = field(default="", repr=False)
    anthropic_api_key: str = field(default="", repr=False)
    replicate_api_token: str = field(default="", repr=False)

    port: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        provider = os.environ.get("TEXT_PROVIDER", "openai").strip().lower()
        if provider not in ("openai", "anthropic"):
            raise ValueError(f"TEXT_PROVIDER must be openai or anthropic, got {provider!r}")
        return cls(
            db_path=Path(os.environ.get("CATALOG_DB_PATH") or DEFAULT_DB_PATH),
            interval=_env_float("PIPELINE_INTERVAL", 5.0),
            timeout=_env_float("PIPELINE_TIMEOUT", 600.0),
            max_retries=_env_int("PIPELINE_MAX_RETRIES", 3),
            text_provider=provider,
            vision_model=os.environ.get("VISION_MODEL", DEFAULT_VISION_MODEL),
            vision_fallback_model=os.environ.get("VISION_FALLBACK_MODEL", DEFAULT_VISION_FALLBACK),
            text_model=os.environ.get("TEXT_MODEL", DEFAULT_TEXT_MODEL),
            text_fallback_model=os.environ.get("TEXT_FALLBACK_MODEL", DEFAULT_TEXT_FALLBACK),
            image_model=os.environ.get("IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            image_fallback_model=os.environ.get("IMAGE_FALLBACK_MODEL", DEFAULT_IMAGE_FALLBACK),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            replicate_api_token=os.environ.get("REPLICATE_API_TOKEN", ""),
            port=_env_int("PORT", 5000),
        )

    def missing_keys(self) -> List[str]:
        """Names of the API credentials the configured providers need but lack."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if self.text_provider == "anthropic" and not self.anthropic_api_key:
            missing.append("ANTHROPIC_API_KEY")
        if not self.replicate_api_token:
            missing.append("REPLICATE_API_TOKEN")
        return missing
