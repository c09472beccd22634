"""
Configuration for the chatroom SDK.

Uses pydantic-settings for environment variable loading. All settings have
defaults suitable for interactive use; applications override them through
CHATROOM_* environment variables or by passing a Settings instance to
RoomClient.
"""

from __future__ import annotations

import logging
from typing import Literal

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """SDK configuration loaded from environment."""

    # Room cache
    event_history_limit: int = Field(
        default=10, ge=0, description="Timeline events retained per room"
    )
    backfill_limit: int = Field(
        default=10, ge=1, description="Default page size for backfill requests"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level for setup_logging")
    log_format: Literal["text", "json"] = Field(default="text")

    model_config = {"env_prefix": "CHATROOM_"}


def setup_logging(settings: Settings) -> None:
    """Configure root logging for an application embedding the SDK.

    The SDK itself never calls this; it only emits through module loggers
    or the logger injected into each room.

    Args:
        settings: SDK settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
