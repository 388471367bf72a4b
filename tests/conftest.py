"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class SpyModel:
    """Stateless model double that records every message list it receives."""

    def __init__(self, reply: str = "ok", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[List[Dict[str, str]]] = []

    @property
    def last_messages(self) -> List[Dict[str, str]]:
        return self.calls[-1]

    def complete(self, messages: Sequence[Dict[str, str]]) -> str:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.reply


class SpySearch:
    """Search double returning a canned block and recording queries."""

    def __init__(self, text: str = "Top web results for \"q\":\n\n(1) **T**\nS\nhttp://x"):
        self.text = text
        self.queries: List[str] = []

    def __call__(self, query: str) -> str:
        self.queries.append(query)
        return self.text


@pytest.fixture(scope="function")
def spy_model() -> SpyModel:
    return SpyModel()


@pytest.fixture(scope="function")
def spy_search() -> SpySearch:
    return SpySearch()


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Ensure tests run with a clean environment (no leftover vars or keys)."""
    for var in ["AGENT_SERVER_CONFIG", "OPENROUTER_KEY", "SERPAPI_KEY", "GEMINI_API_KEY"]:
        monkeypatch.delenv(var, raising=False)
    for key in list(os.environ):
        if key.startswith("AGENT_SERVER__"):
            monkeypatch.delenv(key, raising=False)
    # Relative config paths (config/default.yaml) resolve inside tmp_path
    monkeypatch.chdir(tmp_path)
    yield
