"""Per-conversation state handed to the orchestrator."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .gemini import GeminiChat
from .transcript import Transcript

logger = logging.getLogger(__name__)


class AgentSession:
    """Transcript plus the lazily created tool-calling chat.

    The server keeps a single instance for the whole process; tests and
    embedding code can create as many independent sessions as they like.
    """

    def __init__(self, transcript: Optional[Transcript] = None) -> None:
        self.transcript = transcript if transcript is not None else Transcript()
        self._chat: Optional[GeminiChat] = None
        self._lock = threading.Lock()

    def chat(self, factory: Callable[[], GeminiChat]) -> GeminiChat:
        """Return the current chat, creating it with ``factory`` on first use."""
        with self._lock:
            if self._chat is None:
                self._chat = factory()
            return self._chat

    @property
    def has_chat(self) -> bool:
        return self._chat is not None

    def drop_chat(self, chat: Optional[GeminiChat] = None) -> None:
        """Forget the chat (only if it is still ``chat``, when one is given)."""
        with self._lock:
            if chat is None or self._chat is chat:
                self._chat = None

    def reset(self) -> None:
        self.transcript.clear()
        self.drop_chat()
        logger.info("Session reset: transcript cleared, model session dropped.")
