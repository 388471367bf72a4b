"""Stateful Gemini chat with function calling over the REST ``generateContent`` API.

The provider keeps no server-side conversation: :class:`GeminiChat` owns the
accumulated ``contents`` and resends them on every request, together with the
system instruction and the tool catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from agent_tools.http import DEFAULT_RETRIES, make_timeout, send_with_retry

from .config import get_secret
from .llm import ModelConfigError, ProviderError
from .tool_calls import TOOL_DECLARATIONS, ToolCall

logger = logging.getLogger(__name__)

GEMINI_URL_TEMPLATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


@dataclass(frozen=True)
class ModelReply:
    """One provider turn: final text, or a request to run a tool."""
    text: str = ""
    tool_call: Optional[ToolCall] = None


@dataclass
class GeminiSettings:
    url_template: str = GEMINI_URL_TEMPLATE
    model: str = "gemini-2.5-flash"
    timeout: float = 60.0
    retries: int = DEFAULT_RETRIES


def _parse_reply(data: Any) -> tuple[Dict[str, Any], ModelReply]:
    """Split a generateContent response into (history content, ModelReply)."""
    try:
        content = data["candidates"][0]["content"]
        parts = content.get("parts") or []
    except (KeyError, IndexError, TypeError, AttributeError):
        raise ProviderError("Gemini returned no candidates.") from None

    texts: List[str] = []
    call: Optional[ToolCall] = None
    # History keeps only the call that will be answered; every functionCall
    # part must be matched by a functionResponse on the next request.
    kept: List[Dict[str, Any]] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        fc = part.get("functionCall")
        if fc:
            if call is None:
                call = ToolCall(name=str(fc.get("name") or ""), args=dict(fc.get("args") or {}))
                kept.append(part)
            else:
                logger.info("Ignoring extra function call %r in one reply.", fc.get("name"))
        elif part.get("text"):
            texts.append(str(part["text"]))
            kept.append(part)
    history_entry = {"role": "model", "parts": kept}
    return history_entry, ModelReply(text="".join(texts).strip(), tool_call=call)


class GeminiClient:
    """Factory for :class:`GeminiChat` sessions plus the raw HTTP call."""

    def __init__(
        self,
        api_key: Optional[str],
        system_instruction: str,
        settings: Optional[GeminiSettings] = None,
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key or None
        self.system_instruction = system_instruction
        self.settings = settings or GeminiSettings()
        self.tools = tools if tools is not None else TOOL_DECLARATIONS
        self._transport = transport

    def start_chat(self) -> "GeminiChat":
        if not self.api_key:
            raise ModelConfigError(
                "GEMINI_API_KEY is not set on the server. Please add it to your .env file."
            )
        return GeminiChat(self)

    def generate(self, contents: List[Dict[str, Any]]) -> tuple[Dict[str, Any], ModelReply]:
        body: Dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": self.system_instruction}]},
            "contents": contents,
        }
        if self.tools:
            body["tools"] = [{"functionDeclarations": self.tools}]

        url = self.settings.url_template.format(model=self.settings.model)
        headers = {"x-goog-api-key": self.api_key or "", "Content-Type": "application/json"}
        with httpx.Client(timeout=make_timeout(self.settings.timeout), transport=self._transport) as client:
            r = send_with_retry(client, "POST", url, headers=headers, json=body, retries=self.settings.retries)

        try:
            data = r.json()
        except ValueError:
            data = None
        if not r.is_success:
            message = None
            if isinstance(data, dict) and isinstance(data.get("error"), dict):
                message = data["error"].get("message")
            logger.error("Gemini error %d: %s", r.status_code, data)
            raise ProviderError(message or f"Gemini request failed with {r.status_code}")
        if data is None:
            raise ProviderError("Gemini returned a response that is not valid JSON.")
        return _parse_reply(data)


class GeminiChat:
    """Accumulated conversation for one tool-calling session."""

    def __init__(self, client: GeminiClient) -> None:
        self._client = client
        self.history: List[Dict[str, Any]] = []

    def _send(self, entry: Dict[str, Any]) -> ModelReply:
        contents = self.history + [entry]
        model_entry, reply = self._client.generate(contents)
        # Only commit once the provider accepted the turn
        self.history = contents + [model_entry]
        return reply

    def send_message(self, text: str) -> ModelReply:
        return self._send({"role": "user", "parts": [{"text": text}]})

    def send_tool_result(self, name: str, result: str) -> ModelReply:
        return self._send(_function_response(name, result))

    def record_tool_result(self, name: str, result: str) -> None:
        """Answer a pending call locally, without asking the provider to restate it."""
        self.history.append(_function_response(name, result))

    def record_model_text(self, text: str) -> None:
        self.history.append({"role": "model", "parts": [{"text": text}]})


def _function_response(name: str, result: str) -> Dict[str, Any]:
    return {
        "role": "user",
        "parts": [{"functionResponse": {"name": name, "response": {"result": result}}}],
    }


def create_from_config(cfg: Dict[str, Any], system_instruction: str) -> GeminiClient:
    """Create a GeminiClient from a config dict (e.g., loaded YAML)."""
    model_cfg = (cfg or {}).get("model", {}) if isinstance(cfg, dict) else {}
    g_cfg = model_cfg.get("gemini", {}) or {}
    defaults = GeminiSettings()
    settings = GeminiSettings(
        url_template=g_cfg.get("url_template", defaults.url_template),
        model=g_cfg.get("model", defaults.model),
        timeout=float(model_cfg.get("timeout", defaults.timeout)),
        retries=int(model_cfg.get("retries", defaults.retries)),
    )
    return GeminiClient(get_secret("gemini"), system_instruction, settings)
