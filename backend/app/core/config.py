"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables and provides helpers to load the YAML file holding the
forecasting defaults (history window, smoothing parameters, default periods).
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Comma separated list of allowed CORS origins; empty means "*"
    cors_origins: str = ""

    # Where product/sale snapshots exported from the document store live
    data_dir: str = "data"
    config_dir: str = "configs"


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_forecasting_settings(config_root: str) -> Dict[str, Any]:
    """Return the ``forecasting`` section of ``settings.yaml`` (may be empty)."""

    settings = load_yaml(os.path.join(config_root, "settings.yaml"))
    section = settings.get("forecasting", {})
    if not isinstance(section, dict):
        raise ValueError("'forecasting' in settings.yaml must be a mapping")
    return section
