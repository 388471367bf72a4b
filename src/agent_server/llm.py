"""Stateless chat-completion client for OpenRouter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

from agent_tools.http import DEFAULT_RETRIES, make_timeout, send_with_retry

from .config import get_secret

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I couldn't generate a response."


# -----------------------------
# Errors
# -----------------------------

class ModelConfigError(RuntimeError):
    """A required provider credential is missing."""


class ProviderError(RuntimeError):
    """The provider answered with an error status or an unusable payload."""


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class OpenRouterSettings:
    url: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "meta-llama/llama-3.1-70b-instruct"
    referer: str = "https://myagent.example.com"
    title: str = "Dev AI Agent"
    timeout: float = 60.0
    retries: int = DEFAULT_RETRIES


def _error_message(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
    return None


def _first_choice_text(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content.strip() if isinstance(content, str) else ""


# -----------------------------
# OpenRouter client
# -----------------------------

class OpenRouterClient:
    """Send role-tagged message lists to OpenRouter and return the reply text."""

    def __init__(
        self,
        api_key: Optional[str],
        settings: Optional[OpenRouterSettings] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key or None
        self.settings = settings or OpenRouterSettings()
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.settings.referer,
            "X-Title": self.settings.title,
        }

    def complete(self, messages: Sequence[Dict[str, str]]) -> str:
        """Return the first choice's text for ``messages``.

        Raises
        ------
        ModelConfigError
            No API key configured.
        ProviderError
            Non-2xx status (the provider's own message when it sends one) or
            a body that is not JSON.
        agent_tools.http.TransportError
            Network failure after the retry.
        """
        if not self.api_key:
            raise ModelConfigError(
                "OPENROUTER_KEY is not set on the server. Please add it to your .env file."
            )

        body = {"model": self.settings.model, "messages": list(messages)}
        with httpx.Client(timeout=make_timeout(self.settings.timeout), transport=self._transport) as client:
            r = send_with_retry(
                client,
                "POST",
                self.settings.url,
                headers=self._headers(),
                json=body,
                retries=self.settings.retries,
            )

        try:
            data = r.json()
        except ValueError:
            data = None

        if not r.is_success:
            logger.error("OpenRouter error %d: %s", r.status_code, data)
            raise ProviderError(_error_message(data) or f"OpenRouter request failed with {r.status_code}")
        if data is None:
            raise ProviderError("OpenRouter returned a response that is not valid JSON.")

        return _first_choice_text(data) or FALLBACK_REPLY


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any]) -> OpenRouterClient:
    """Create an OpenRouterClient from a config dict (e.g., loaded YAML)."""
    model_cfg = (cfg or {}).get("model", {}) if isinstance(cfg, dict) else {}
    or_cfg = model_cfg.get("openrouter", {}) or {}
    defaults = OpenRouterSettings()
    settings = OpenRouterSettings(
        url=or_cfg.get("url", defaults.url),
        model=or_cfg.get("model", defaults.model),
        referer=or_cfg.get("referer", defaults.referer),
        title=or_cfg.get("title", defaults.title),
        timeout=float(model_cfg.get("timeout", defaults.timeout)),
        retries=int(model_cfg.get("retries", defaults.retries)),
    )
    return OpenRouterClient(get_secret("openrouter"), settings)
