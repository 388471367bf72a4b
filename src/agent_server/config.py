"""Configuration loading utilities for the agent server.

This module handles layered configuration:
1. Built-in defaults (``DEFAULTS``)
2. YAML file: explicit path argument, else the environment variable
   AGENT_SERVER_CONFIG, else "config/default.yaml"
3. Environment overrides with prefix ``AGENT_SERVER__``
   (e.g., AGENT_SERVER__SEARCH__PROVIDER=duckduckgo)

Secrets never live in YAML; they are read from the environment (optionally
populated from a ``.env`` file) by :func:`get_secret`.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "server": {
        "cors_origins": ["*"],
        "static_dir": "public",
    },
    "agent": {
        "name": "DEV AI Agent",
        "history_window": 10,
    },
    "model": {
        "provider": "openrouter",
        "timeout": 60,
        "retries": 1,
        "openrouter": {
            "url": "https://openrouter.ai/api/v1/chat/completions",
            "model": "meta-llama/llama-3.1-70b-instruct",
            "referer": "https://myagent.example.com",
            "title": "Dev AI Agent",
        },
        "gemini": {
            "url_template": "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
            "model": "gemini-2.5-flash",
            "max_tool_rounds": 5,
        },
    },
    "search": {
        "provider": "serpapi",
        "url": "https://serpapi.com/search.json",
        "engine": "google",
        "num": 5,
        "max_items": 3,
        "timeout": 15,
        "retries": 1,
    },
}

# Environment variable holding each secret
SECRET_ENV = {
    "openrouter": "OPENROUTER_KEY",
    "serpapi": "SERPAPI_KEY",
    "gemini": "GEMINI_API_KEY",
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix AGENT_SERVER__."""
    prefix = "AGENT_SERVER__"
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        # e.g., AGENT_SERVER__MODEL__TIMEOUT -> cfg["model"]["timeout"]
        parts = key[len(prefix):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        # Attempt to parse simple types (bool, int, float)
        if value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the agent server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``AGENT_SERVER_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file contents, environment overrides applied.
    """
    load_dotenv(find_dotenv(usecwd=True))

    if path is None:
        path = os.environ.get("AGENT_SERVER_CONFIG", "config/default.yaml")

    cfg = copy.deepcopy(DEFAULTS)
    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(cfg)

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}")

    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_deep_merge(cfg, loaded))


def get_secret(name: str) -> Optional[str]:
    """Return the API key for ``name`` (openrouter, serpapi, gemini) or None."""
    env_var = SECRET_ENV[name]
    value = (os.environ.get(env_var) or "").strip()
    return value or None
