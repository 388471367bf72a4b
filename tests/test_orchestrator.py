from __future__ import annotations

import threading

import pytest

from agent_server.gemini import ModelReply
from agent_server.orchestrator import (
    SEARCH_NOTE,
    TOOL_ROUNDS_EXCEEDED,
    TurnOrchestrator,
    build_prompt,
    classify_message,
    should_use_web_search,
)
from agent_server.session import AgentSession
from agent_server.tool_calls import ToolCall
from agent_server.transcript import AGENT, USER, Transcript


def _orch(model, search, **kwargs) -> TurnOrchestrator:
    return TurnOrchestrator(AgentSession(), model=model, search=search, **kwargs)


# -----------------------------
# Classification
# -----------------------------

@pytest.mark.parametrize(
    "text, kind",
    [
        ("calc: 1+1", "calc"),
        ("CALC:2*3", "calc"),
        ("study: Quantum Physics", "study"),
        ("web: current prime minister of india", "web"),
        ("Search: best pizza", "web"),
        ("what's the weather today", "auto_search"),
        ("Tell me the LATEST on rust", "auto_search"),
        ("explain recursion", "plain"),
    ],
)
def test_classify_message(text, kind):
    assert classify_message(text).kind == kind


def test_classify_preserves_case_after_prefix():
    route = classify_message("web: Current Prime Minister of India")
    assert route.search_query == "Current Prime Minister of India"
    assert route.question.endswith("Question: Current Prime Minister of India")


def test_classify_empty_study_topic_defaults():
    assert 'topic: "General topic"' in classify_message("study:").question


def test_classify_web_without_query_searches_whole_message():
    route = classify_message("web:")
    assert route.search_query == "web:"


def test_should_use_web_search_is_substring_match():
    assert should_use_web_search("Stock PRICE for ACME")
    assert not should_use_web_search("explain recursion")


def test_build_prompt_order():
    t = Transcript()
    t.append(USER, "earlier q")
    t.append(AGENT, "earlier a")
    msgs = build_prompt("sys", t.messages(), "now?", "RESULTS")
    assert [m["role"] for m in msgs] == ["system", "user", "assistant", "system", "user"]
    assert msgs[3]["content"] == SEARCH_NOTE + "RESULTS"
    assert msgs[-1] == {"role": "user", "content": "now?"}


# -----------------------------
# Stateless variant
# -----------------------------

def test_calc_short_circuits_model_and_search(spy_model, spy_search):
    orch = _orch(spy_model, spy_search)
    result = orch.handle_turn("calc: 5*2+10")

    assert result.ok
    assert result.reply == "The result of 5*2+10 is **20**."
    assert spy_model.calls == []
    assert spy_search.queries == []
    assert [m.sender for m in result.history] == [USER, AGENT]


def test_calc_invalid_expression(spy_model, spy_search):
    result = _orch(spy_model, spy_search).handle_turn("calc: 2 +")
    assert result.reply == "The result of 2 + is **Error: Invalid mathematical expression.**."
    assert spy_model.calls == []


def test_study_rewrites_question_without_search(spy_model, spy_search):
    spy_model.reply = "# Plan\n- Day 1"
    result = _orch(spy_model, spy_search).handle_turn("study: Quantum Physics")

    assert result.reply == "# Plan\n- Day 1"
    assert spy_search.queries == []
    question = spy_model.last_messages[-1]["content"]
    assert "Quantum Physics" in question
    assert "markdown" in question


def test_web_prefix_runs_one_search_and_injects_results(spy_model, spy_search):
    result = _orch(spy_model, spy_search).handle_turn("web: current prime minister of india")

    assert result.ok
    assert spy_search.queries == ["current prime minister of india"]
    contents = [m["content"] for m in spy_model.last_messages]
    assert SEARCH_NOTE + spy_search.text in contents
    assert "current prime minister of india" in contents[-1]


def test_keyword_triggers_automatic_search(spy_model, spy_search):
    _orch(spy_model, spy_search).handle_turn("what's the weather today")
    assert spy_search.queries == ["what's the weather today"]
    assert spy_model.last_messages[-1] == {"role": "user", "content": "what's the weather today"}


def test_plain_message_skips_search(spy_model, spy_search):
    _orch(spy_model, spy_search).handle_turn("explain recursion")
    assert spy_search.queries == []
    assert [m["role"] for m in spy_model.last_messages] == ["system", "user"]


def test_search_failure_string_still_reaches_model(spy_model):
    def failing_search(query):
        return f'Error: Failed to fetch web results for "{query}".'

    result = _orch(spy_model, failing_search).handle_turn("web: anything")
    assert result.ok
    assert any("Failed to fetch" in m["content"] for m in spy_model.last_messages)


def test_transcript_grows_by_two_with_increasing_ids(spy_model, spy_search):
    orch = _orch(spy_model, spy_search)
    for i in range(3):
        result = orch.handle_turn(f"hello {i}")
    ids = [m.id for m in result.history]
    assert ids == [1, 2, 3, 4, 5, 6]
    assert [m.sender for m in result.history] == [USER, AGENT] * 3


def test_history_window_excludes_current_turn(spy_model, spy_search):
    orch = _orch(spy_model, spy_search, history_window=2)
    for i in range(3):
        orch.handle_turn(f"q{i}")

    sent = spy_model.last_messages
    # system + two prior messages + current question
    assert [m["content"] for m in sent[1:]] == ["q1", "ok", "q2"]


def test_reset_restarts_ids(spy_model, spy_search):
    orch = _orch(spy_model, spy_search)
    orch.handle_turn("one")
    orch.reset()
    assert orch.history() == []
    result = orch.handle_turn("two")
    assert [m.id for m in result.history] == [1, 2]


def test_model_failure_records_error_message(spy_model, spy_search):
    spy_model.error = RuntimeError("OpenRouter request failed with 502")
    result = _orch(spy_model, spy_search).handle_turn("hi")

    assert not result.ok
    assert result.error == "OpenRouter request failed with 502"
    assert [m.sender for m in result.history] == [USER, AGENT]
    assert result.history[0].text == "hi"
    assert result.history[1].text.startswith("⚠️")


def test_reset_during_turn_drops_stale_reply(spy_search):
    started = threading.Event()
    release = threading.Event()

    class SlowModel:
        def complete(self, messages):
            started.set()
            release.wait(5)
            return "late"

    orch = _orch(SlowModel(), spy_search)
    worker = threading.Thread(target=orch.handle_turn, args=("slow question",))
    worker.start()
    assert started.wait(5)

    orch.reset()
    release.set()
    worker.join(5)

    assert orch.history() == []
    assert orch.handle_turn("calc: 1+1").history[0].id == 1


def test_requires_a_model():
    with pytest.raises(ValueError):
        TurnOrchestrator(AgentSession())


# -----------------------------
# Tool-calling variant
# -----------------------------

class ScriptedChat:
    """Chat double that replays a fixed sequence of model replies."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.sent = []
        self.recorded = []

    def _next(self):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def send_message(self, text):
        self.sent.append(("user", text))
        return self._next()

    def send_tool_result(self, name, result):
        self.sent.append((name, result))
        return self._next()

    def record_tool_result(self, name, result):
        self.recorded.append(("tool", name, result))

    def record_model_text(self, text):
        self.recorded.append(("model", text))


class ScriptedToolModel:
    def __init__(self, *chats):
        self.chats = list(chats)
        self.started = 0

    def start_chat(self):
        self.started += 1
        return self.chats.pop(0)


def _call(name, **args):
    return ModelReply(tool_call=ToolCall(name=name, args=args))


def _tool_orch(*chats, **kwargs):
    model = ScriptedToolModel(*chats)
    orch = TurnOrchestrator(AgentSession(), tool_model=model, search=lambda q: "", **kwargs)
    return orch, model


def test_tool_variant_plain_reply():
    chat = ScriptedChat([ModelReply(text="Hello there")])
    orch, _ = _tool_orch(chat)
    result = orch.handle_turn("calc: looks like a prefix but is not routed")

    assert orch.variant == "tools"
    assert result.reply == "Hello there"
    assert chat.sent == [("user", "calc: looks like a prefix but is not routed")]


def test_tool_variant_calculate_short_circuits():
    chat = ScriptedChat([_call("calculate", expr="5*2+10")])
    orch, _ = _tool_orch(chat)
    result = orch.handle_turn("what is 5*2+10?")

    assert result.reply == "The result of 5*2+10 is **20**."
    assert chat.recorded == [("tool", "calculate", "20"), ("model", result.reply)]
    assert chat.replies == []


def test_tool_variant_study_plan_round_trip():
    chat = ScriptedChat([_call("generate_study_plan", topic="Chemistry"), ModelReply(text="Here is your plan")])
    orch, _ = _tool_orch(chat)
    result = orch.handle_turn("make me a chemistry plan")

    assert result.reply == "Here is your plan"
    name, plan = chat.sent[1]
    assert name == "generate_study_plan"
    assert plan.startswith("# 5-Day Study Plan: Chemistry")


def test_tool_variant_unknown_tool_reported_back():
    chat = ScriptedChat([_call("launch_rocket"), ModelReply(text="Sorry, I can't do that")])
    orch, _ = _tool_orch(chat)
    result = orch.handle_turn("launch it")

    assert result.reply == "Sorry, I can't do that"
    assert chat.sent[1] == ("launch_rocket", 'Error: Unknown tool "launch_rocket".')


def test_tool_variant_round_cap_drops_chat():
    chat = ScriptedChat([_call("nope")] * 4)
    replacement = ScriptedChat([ModelReply(text="fresh")])
    orch, model = _tool_orch(chat, replacement, max_tool_rounds=3)

    result = orch.handle_turn("loop forever")
    assert result.reply == TOOL_ROUNDS_EXCEEDED
    assert not orch.session.has_chat

    assert orch.handle_turn("again").reply == "fresh"
    assert model.started == 2


def test_tool_variant_reuses_chat_across_turns():
    chat = ScriptedChat([ModelReply(text="a"), ModelReply(text="b")])
    orch, model = _tool_orch(chat)
    orch.handle_turn("first")
    orch.handle_turn("second")
    assert model.started == 1
    assert len(orch.history()) == 4


def test_tool_variant_error_drops_chat_and_records_failure():
    chat = ScriptedChat([RuntimeError("quota exceeded")])
    orch, _ = _tool_orch(chat)
    result = orch.handle_turn("hi")

    assert not result.ok
    assert result.reply == "⚠️ quota exceeded"
    assert not orch.session.has_chat
    assert [m.sender for m in result.history] == [USER, AGENT]


def test_tool_variant_reset_drops_chat():
    chat = ScriptedChat([ModelReply(text="a")])
    orch, _ = _tool_orch(chat)
    orch.handle_turn("hi")
    assert orch.session.has_chat
    orch.reset()
    assert not orch.session.has_chat
    assert orch.history() == []


@pytest.mark.parametrize(
    "text, route",
    [
        ("calc: 1+1", "calc"),
        ("study: Chemistry", "study"),
        ("search: rust async", "web"),
        ("latest rust release", "auto_search"),
        ("explain recursion", "plain"),
    ],
)
def test_turn_result_reports_route(spy_model, spy_search, text, route):
    assert _orch(spy_model, spy_search).handle_turn(text).route == route


def test_failed_turn_still_reports_route(spy_model, spy_search):
    spy_model.error = RuntimeError("boom")
    assert _orch(spy_model, spy_search).handle_turn("web: x").route == "web"


def test_tool_variant_route():
    orch, _ = _tool_orch(ScriptedChat([ModelReply(text="hi")]))
    assert orch.handle_turn("hello").route == "tools"
