"""Agent server package: chat turns routed to an LLM with search and calculator helpers.

This package provides a FastAPI application factory named ``create_app``
inside ``agent_server/server.py`` (see :func:`create_app`).

Typical usage
-------------
from agent_server import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 5000
"""

from __future__ import annotations

from .orchestrator import TurnOrchestrator, TurnResult, classify_message
from .server import create_app
from .session import AgentSession
from .transcript import Message, Transcript

__all__ = [
    "AgentSession",
    "Message",
    "Transcript",
    "TurnOrchestrator",
    "TurnResult",
    "classify_message",
    "create_app",
    "__version__",
    "get_version",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "1.0.0"

def get_version() -> str:
    """Return the package version."""
    return __version__
