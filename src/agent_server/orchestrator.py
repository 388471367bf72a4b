"""Turn orchestration: classify a user message, gather context, call the model.

Stateless variant (OpenRouter)::

    calc:   -> local calculator, no model call
    study:  -> rewritten study-plan question, no search
    web:/search: -> forced search, rewritten question
    keyword match -> automatic search, original question
    otherwise -> plain pass-through

Tool-calling variant (Gemini): the message goes straight into the session's
chat and the model decides which tools to call; tool calls are resolved here
in a bounded loop.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from agent_tools.calculator import evaluate
from agent_tools.web import SearchClient

from .gemini import GeminiChat, ModelReply
from .llm import FALLBACK_REPLY
from .session import AgentSession
from .tool_calls import CalculateRequest, StudyPlanRequest, build_study_plan, parse_tool_call
from .transcript import AGENT, USER, Message

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Prompt text
# -----------------------------------------------------------------------------
SYSTEM_PROMPT_TEMPLATE = (
    "You are a friendly and helpful AI assistant named {name}. "
    "You can answer any kind of question: explanations, how-to help, coding, writing, general knowledge, etc. "
    "When you are given 'Web search results' from the system, use them as your main source for up-to-date facts, "
    "but still explain answers in your own words."
)
TOOL_SYSTEM_PROMPT_TEMPLATE = (
    "You are a friendly and helpful AI assistant named {name}. "
    "Use the calculate tool for any arithmetic and the generate_study_plan tool when the user asks "
    "for a study plan, then present the result clearly in markdown."
)
SEARCH_NOTE = "Here are some web search results to help answer the user's latest question:\n\n"
STUDY_QUESTION = (
    'Create a clear, beginner-friendly **5-day study plan** for the topic: "{topic}". '
    "Use markdown headings and bullet points. Include daily goals and resources."
)
WEB_QUESTION = (
    "Using the web search results provided, answer this question clearly and concisely:\n\nQuestion: {query}"
)

ERROR_MARKER = "⚠️ "
GENERIC_ERROR = "Something went wrong while talking to the AI model or web search."
TOOL_ROUNDS_EXCEEDED = "I couldn't finish working through the tool calls for that request."
DEFAULT_TOPIC = "General topic"

AUTO_SEARCH_KEYWORDS = (
    "latest",
    "today",
    "yesterday",
    "this week",
    "this month",
    "current",
    "news",
    "score",
    "match",
    "live",
    "price",
    "stock",
    "share price",
    "weather",
    "forecast",
    "update",
    "who is the current",
    "who is the president",
    "who is the prime minister",
)


def system_prompt_for(name: str, *, tools: bool = False) -> str:
    template = TOOL_SYSTEM_PROMPT_TEMPLATE if tools else SYSTEM_PROMPT_TEMPLATE
    return template.format(name=name)


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Route:
    """How a turn will be answered."""
    kind: str                              # calc | study | web | auto_search | plain
    question: str                          # text sent to the model as the user turn
    search_query: Optional[str] = None     # set when a search runs first
    expression: Optional[str] = None       # set for calc


def should_use_web_search(message: str) -> bool:
    lower = message.lower()
    return any(k in lower for k in AUTO_SEARCH_KEYWORDS)


def _after_prefix(message: str) -> str:
    # Everything after the first colon, original casing preserved
    return message.split(":", 1)[1].strip() if ":" in message else ""


def classify_message(message: str) -> Route:
    lower = message.lower().strip()

    if lower.startswith("calc:"):
        expr = _after_prefix(message)
        return Route(kind="calc", question=message, expression=expr)

    if lower.startswith("study:"):
        topic = _after_prefix(message) or DEFAULT_TOPIC
        return Route(kind="study", question=STUDY_QUESTION.format(topic=topic))

    if lower.startswith("web:") or lower.startswith("search:"):
        query = _after_prefix(message) or message
        return Route(kind="web", question=WEB_QUESTION.format(query=query), search_query=query)

    if should_use_web_search(message):
        return Route(kind="auto_search", question=message, search_query=message)

    return Route(kind="plain", question=message)


def format_calculation(expr: str, result: str) -> str:
    return f"The result of {expr} is **{result}**."


def build_prompt(
    system_prompt: str,
    history: Sequence[Message],
    question: str,
    search_text: Optional[str] = None,
) -> List[Dict[str, str]]:
    """System instruction, prior turns, optional search note, then the question."""
    messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
    messages.extend(m.to_chat_message() for m in history)
    if search_text:
        messages.append({"role": "system", "content": SEARCH_NOTE + search_text})
    messages.append({"role": "user", "content": question})
    return messages


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------
class ChatModel(Protocol):
    def complete(self, messages: Sequence[Dict[str, str]]) -> str: ...


class ToolChatModel(Protocol):
    def start_chat(self) -> GeminiChat: ...


@dataclass
class TurnResult:
    reply: str
    history: List[Message] = field(default_factory=list)
    ok: bool = True
    error: Optional[str] = None
    route: Optional[str] = None

    def history_dicts(self) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self.history]


class TurnOrchestrator:
    """Runs one chat turn at a time against a single :class:`AgentSession`.

    Exactly one of ``model`` (stateless) or ``tool_model`` (tool calling)
    drives the turn; when both are given the tool-calling variant wins.
    """

    def __init__(
        self,
        session: AgentSession,
        *,
        model: Optional[ChatModel] = None,
        tool_model: Optional[ToolChatModel] = None,
        search: Optional[Callable[[str], str]] = None,
        calculator: Callable[[str], str] = evaluate,
        system_prompt: Optional[str] = None,
        history_window: int = 10,
        max_tool_rounds: int = 5,
    ) -> None:
        if model is None and tool_model is None:
            raise ValueError("TurnOrchestrator needs a model or a tool_model.")
        self.session = session
        self.model = model
        self.tool_model = tool_model
        self.search = search or SearchClient().search
        self.calculator = calculator
        self.system_prompt = system_prompt or system_prompt_for("DEV AI Agent")
        self.history_window = int(history_window)
        self.max_tool_rounds = max(1, int(max_tool_rounds))
        self._turn_lock = threading.Lock()

    @property
    def variant(self) -> str:
        return "tools" if self.tool_model is not None else "stateless"

    # --------- public API ----------
    def handle_turn(self, user_text: str) -> TurnResult:
        with self._turn_lock:
            transcript = self.session.transcript
            generation = transcript.generation
            user_msg = transcript.append(USER, user_text)
            route: Optional[Route] = None
            try:
                if self.tool_model is not None:
                    reply = self._run_tool_turn(user_text)
                else:
                    route = classify_message(user_text)
                    logger.info("Turn %d route=%s", user_msg.id, route.kind)
                    reply = self._run_stateless_turn(route, before_id=user_msg.id)
            except Exception as e:
                logger.exception("Turn %d failed: %s", user_msg.id, e)
                error = str(e) or GENERIC_ERROR
                self._record(ERROR_MARKER + error, generation)
                return TurnResult(
                    reply=ERROR_MARKER + error,
                    history=transcript.messages(),
                    ok=False,
                    error=error,
                    route=route.kind if route else None,
                )

            self._record(reply, generation)
            return TurnResult(
                reply=reply,
                history=transcript.messages(),
                route=route.kind if route else "tools",
            )

    def reset(self) -> None:
        self.session.reset()

    def history(self) -> List[Message]:
        return self.session.transcript.messages()

    # --------- internals ----------
    def _record(self, text: str, generation: int) -> None:
        if self.session.transcript.append(AGENT, text, generation=generation) is None:
            logger.warning("Session was reset during the turn; reply not recorded.")

    def _run_stateless_turn(self, route: Route, *, before_id: int) -> str:
        if route.kind == "calc":
            expr = route.expression or ""
            return format_calculation(expr, self.calculator(expr))

        search_text: Optional[str] = None
        if route.search_query is not None:
            search_text = self.search(route.search_query)

        history = self.session.transcript.recent(self.history_window, before_id=before_id)
        messages = build_prompt(self.system_prompt, history, route.question, search_text)
        return self.model.complete(messages)

    def _run_tool_turn(self, user_text: str) -> str:
        chat = self.session.chat(self.tool_model.start_chat)
        try:
            reply = chat.send_message(user_text)
            return self._resolve_tool_calls(chat, reply)
        except Exception:
            self.session.drop_chat(chat)
            raise

    def _resolve_tool_calls(self, chat: GeminiChat, reply: ModelReply) -> str:
        rounds = 0
        while reply.tool_call is not None:
            if rounds >= self.max_tool_rounds:
                logger.warning("Tool call limit (%d) reached; dropping model session.", self.max_tool_rounds)
                self.session.drop_chat(chat)
                return TOOL_ROUNDS_EXCEEDED
            rounds += 1

            call = reply.tool_call
            request = parse_tool_call(call.name, call.args)
            logger.info("Tool call %d: %s", rounds, call.name)

            if isinstance(request, CalculateRequest):
                result = self.calculator(request.expr)
                text = format_calculation(request.expr, result)
                chat.record_tool_result(call.name, result)
                chat.record_model_text(text)
                return text
            elif isinstance(request, StudyPlanRequest):
                result = build_study_plan(request.topic)
            else:
                result = f'Error: Unknown tool "{request.name}".'

            reply = chat.send_tool_result(call.name, result)

        return reply.text or FALLBACK_REPLY
