"""Tool catalog for the tool-calling variant and the typed requests it produces."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

CALCULATE = "calculate"
STUDY_PLAN = "generate_study_plan"

# Gemini ``functionDeclarations`` (OpenAPI-subset schemas)
TOOL_DECLARATIONS: List[Dict[str, Any]] = [
    {
        "name": CALCULATE,
        "description": "Evaluate a basic arithmetic expression such as '5*2+10' and return the numeric result.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "expr": {"type": "STRING", "description": "The arithmetic expression to evaluate."},
            },
            "required": ["expr"],
        },
    },
    {
        "name": STUDY_PLAN,
        "description": "Create a beginner-friendly 5-day study plan outline for a topic.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "topic": {"type": "STRING", "description": "The subject to study."},
            },
            "required": ["topic"],
        },
    },
]


@dataclass(frozen=True)
class ToolCall:
    """Raw function call as requested by the provider."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CalculateRequest:
    expr: str


@dataclass(frozen=True)
class StudyPlanRequest:
    topic: str


@dataclass(frozen=True)
class UnknownToolRequest:
    name: str


ToolRequest = Union[CalculateRequest, StudyPlanRequest, UnknownToolRequest]


def parse_tool_call(name: str, args: Mapping[str, Any] | None) -> ToolRequest:
    """Narrow a provider function call to one of the known request variants."""
    args = args or {}
    if name == CALCULATE:
        return CalculateRequest(expr=str(args.get("expr") or "").strip())
    if name == STUDY_PLAN:
        return StudyPlanRequest(topic=str(args.get("topic") or "").strip() or "General topic")
    return UnknownToolRequest(name=name)


def build_study_plan(topic: str) -> str:
    """Markdown outline returned to the model as the study-plan tool result."""
    days = [
        ("Day 1: Foundations", "Learn the core vocabulary and the big picture", "An introductory overview article or video"),
        ("Day 2: Key concepts", "Work through the central ideas one at a time", "A beginner textbook chapter or course module"),
        ("Day 3: Worked examples", "Follow solved examples and explain each step", "Tutorials with step-by-step walkthroughs"),
        ("Day 4: Practice", "Solve exercises without looking at solutions", "Practice problems or a small hands-on project"),
        ("Day 5: Review", "Summarize what you learned and fill the gaps", "Flashcards and a short self-quiz"),
    ]
    lines = [f"# 5-Day Study Plan: {topic}", ""]
    for heading, goal, resource in days:
        lines.append(f"## {heading}")
        lines.append(f"- **Goal:** {goal} of {topic}.")
        lines.append(f"- **Resources:** {resource}.")
        lines.append("")
    return "\n".join(lines).rstrip()
