"""Application configuration utilities."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .schemas import UserRole

logger = logging.getLogger(__name__)


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json."""

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    default_profile_role: UserRole = Field(default=UserRole.PARENT)
    report_window_months: int = Field(default=1, ge=1)
    password_reset_redirect_url: Optional[str] = None


def _config_path() -> Path:
    override = os.getenv("CARETRACK_CONFIG")
    if override:
        return Path(override).resolve()
    return Path(__file__).resolve().parents[1] / "config.json"


def load_config() -> AppConfig:
    """Load configuration from config.json, falling back to defaults when absent."""

    config_file = _config_path()
    if not config_file.exists():
        logger.info("config file not found, using defaults", extra={"path": str(config_file)})
        return AppConfig()

    contents: Dict[str, Any] = json.loads(config_file.read_text())
    return AppConfig(**contents)


load_dotenv()

CONFIG = load_config()
