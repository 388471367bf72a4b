"""In-memory conversation transcript (thread-safe, append-only, resettable)."""
from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

USER = "user"
AGENT = "agent"
SENDERS = (USER, AGENT)


# -----------------------------
# Helpers
# -----------------------------
def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Message:
    """A single exchanged message.

    ``id`` is the sequence id: strictly increasing within a transcript and
    restarting at 1 after a reset.
    """
    id: int
    sender: str
    text: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_chat_message(self) -> Dict[str, str]:
        """Provider-facing ``{role, content}`` form."""
        role = "user" if self.sender == USER else "assistant"
        return {"role": role, "content": self.text}


# -----------------------------
# Transcript
# -----------------------------
class Transcript:
    """Ordered record of messages for one session.

    ``generation`` increments on every :meth:`clear`. Callers that capture it
    before a long operation can pass it back to :meth:`append`; if a reset
    happened in between the append is refused and ``None`` is returned.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._next_id = 1
        self._generation = 0
        self._lock = threading.RLock()

    # --------- core API ----------
    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def append(self, sender: str, text: str, *, generation: Optional[int] = None) -> Optional[Message]:
        """Append a message and return it (``None`` if ``generation`` is stale)."""
        if sender not in SENDERS:
            raise ValueError(f"sender must be one of {SENDERS}, got {sender!r}")
        with self._lock:
            if generation is not None and generation != self._generation:
                return None
            msg = Message(id=self._next_id, sender=sender, text=text, timestamp=_utc_iso())
            self._next_id += 1
            self._messages.append(msg)
            return msg

    def messages(self) -> List[Message]:
        """Snapshot copy of the full transcript."""
        with self._lock:
            return list(self._messages)

    def recent(self, k: int, *, before_id: Optional[int] = None) -> List[Message]:
        """Return up to ``k`` most recent messages, optionally only those older than ``before_id``."""
        with self._lock:
            items = self._messages
            if before_id is not None:
                items = [m for m in items if m.id < before_id]
            return list(items[-k:]) if k > 0 else []

    def clear(self) -> None:
        with self._lock:
            self._messages = []
            self._next_id = 1
            self._generation += 1

    # --------- convenience ----------
    def to_dicts(self) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self.messages()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
