"""FastAPI application exposing the chat agent to the browser page."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from agent_tools.web import SearchClient

from . import gemini, llm
from .config import get_secret, load_config
from .orchestrator import ChatModel, ToolChatModel, TurnOrchestrator, system_prompt_for
from .session import AgentSession

logger = logging.getLogger(__name__)

MISSING_MESSAGE = "No message provided from frontend"


# -----------------------------
# Pydantic request
# -----------------------------
class AgentRequest(BaseModel):
    message: Optional[str] = None


# -----------------------------
# Utilities
# -----------------------------
def _make_search(cfg: Dict[str, Any]) -> SearchClient:
    s = cfg.get("search", {}) or {}
    return SearchClient(
        get_secret("serpapi"),
        provider=s.get("provider", "serpapi"),
        url=s.get("url", "https://serpapi.com/search.json"),
        engine=s.get("engine", "google"),
        num=int(s.get("num", 5)),
        max_items=int(s.get("max_items", 3)),
        timeout=float(s.get("timeout", 15)),
        retries=int(s.get("retries", 1)),
    )


def _make_orchestrator(
    cfg: Dict[str, Any],
    session: AgentSession,
    model: Optional[ChatModel],
    tool_model: Optional[ToolChatModel],
    search: Callable[[str], str],
) -> TurnOrchestrator:
    agent_cfg = cfg.get("agent", {}) or {}
    model_cfg = cfg.get("model", {}) or {}
    name = str(agent_cfg.get("name") or "DEV AI Agent")
    provider = str(model_cfg.get("provider", "openrouter")).lower()

    if model is None and tool_model is None:
        if provider == "gemini":
            tool_model = gemini.create_from_config(cfg, system_prompt_for(name, tools=True))
        elif provider == "openrouter":
            model = llm.create_from_config(cfg)
        else:
            raise RuntimeError(f"Unknown model provider {provider!r}; expected 'openrouter' or 'gemini'.")

    return TurnOrchestrator(
        session,
        model=model,
        tool_model=tool_model,
        search=search,
        system_prompt=system_prompt_for(name, tools=tool_model is not None),
        history_window=int(agent_cfg.get("history_window", 10)),
        max_tool_rounds=int((model_cfg.get("gemini", {}) or {}).get("max_tool_rounds", 5)),
    )


def _log_startup(orchestrator: TurnOrchestrator, search_client: SearchClient) -> None:
    if orchestrator.variant == "tools":
        logger.info("Gemini API key: %s", "Loaded" if get_secret("gemini") else "Missing")
    else:
        logger.info("OpenRouter API key: %s", "Loaded" if get_secret("openrouter") else "Missing")
    logger.info(
        "Web search (%s): %s", search_client.provider, "Enabled" if search_client.enabled else "Disabled"
    )


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    model: Optional[ChatModel] = None,
    tool_model: Optional[ToolChatModel] = None,
    search: Optional[Callable[[str], str]] = None,
    session: Optional[AgentSession] = None,
) -> FastAPI:
    cfg = load_config(config_path)

    # CORS
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    # Services
    session = session or AgentSession()
    search_client = _make_search(cfg)
    orchestrator = _make_orchestrator(cfg, session, model, tool_model, search or search_client.search)
    _log_startup(orchestrator, search_client)

    app = FastAPI(title="Dev AI Agent", version="1.0.0")
    app.state.orchestrator = orchestrator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    static_dir = Path(cfg.get("server", {}).get("static_dir") or "public")
    index_file = static_dir / "index.html"
    if static_dir.is_dir():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

    @app.get("/")
    def root():
        if index_file.exists():
            return FileResponse(str(index_file))
        return JSONResponse({"ok": True, "msg": "Dev AI Agent API is running. No UI found."})

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "variant": orchestrator.variant,
            "search_enabled": search_client.enabled,
            "messages": len(session.transcript),
        }

    @app.get("/api/history")
    def history() -> Dict[str, Any]:
        return {"history": session.transcript.to_dicts()}

    @app.post("/api/reset")
    def reset() -> Dict[str, Any]:
        orchestrator.reset()
        return {"status": "ok", "message": "Session reset."}

    @app.post("/api/agent")
    def agent(req: Optional[AgentRequest] = None):
        message = req.message if req is not None else None
        if not message or not message.strip():
            return JSONResponse({"error": MISSING_MESSAGE}, status_code=400)

        result = orchestrator.handle_turn(message)
        if not result.ok:
            return JSONResponse(
                {"error": result.error, "history": result.history_dicts()},
                status_code=500,
            )
        return {"type": "agent", "result": result.reply, "history": result.history_dicts()}

    return app
