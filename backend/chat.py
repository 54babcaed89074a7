"""Bedrock-backed AI tutor replies grounded in the student's Canvas data."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from coursecompanion.models.canvas import Course, CourseBundle, ModelValidationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "us.anthropic.claude-3-7-sonnet-20250219-v1:0"
DEFAULT_REASONING_BUDGET = 2000
MIN_REASONING_BUDGET = 1024
_RESPONSE_TOKENS = 4096
_FALLBACK_TEXT = "I was unable to generate a response."
_MAX_ASSIGNMENTS_PER_COURSE = 10


class ChatError(RuntimeError):
    """Raised for model invocation or response failures."""


@dataclass(frozen=True)
class ChatConfig:
    """Bedrock model selection and default thinking budget."""

    model_id: str = DEFAULT_MODEL_ID
    reasoning_budget: int = DEFAULT_REASONING_BUDGET

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ChatConfig":
        source = os.environ if env is None else env
        model_id = source.get("BEDROCK_MODEL_ID", "").strip() or DEFAULT_MODEL_ID
        return cls(
            model_id=model_id,
            reasoning_budget=_parse_budget(source.get("BEDROCK_REASONING_BUDGET"), DEFAULT_REASONING_BUDGET),
        )


def _parse_budget(raw: Any, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        parsed = int(str(raw).strip())
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return max(parsed, MIN_REASONING_BUDGET)


def _bedrock_runtime() -> Any:
    import boto3

    return boto3.client("bedrock-runtime")


def normalize_conversation_history(history: Any) -> list[dict[str, Any]]:
    """Convert UI chat history rows (``text``/``isAI``) into Bedrock converse messages."""
    if not isinstance(history, list):
        return []

    messages: list[dict[str, Any]] = []
    for entry in history:
        if not isinstance(entry, Mapping):
            continue
        text = entry.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        messages.append(
            {
                "role": "assistant" if entry.get("isAI") else "user",
                "content": [{"text": text}],
            }
        )
    return messages


def _merge_consecutive_roles(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # Converse rejects two adjacent messages with the same role.
    merged: list[dict[str, Any]] = []
    for message in messages:
        if merged and merged[-1]["role"] == message["role"]:
            merged[-1] = {
                "role": message["role"],
                "content": list(merged[-1]["content"]) + list(message["content"]),
            }
            continue
        merged.append(message)
    while merged and merged[0]["role"] != "user":
        merged.pop(0)
    return merged


def _format_score(value: Any) -> str:
    if value is None:
        return "n/a"
    return f"{value}%"


def format_course_context(bundles: Iterable[CourseBundle]) -> str | None:
    """Render aggregated course bundles as a compact prompt context block."""
    sections: list[str] = []
    for bundle in bundles:
        try:
            course = Course.from_api_dict(bundle.course)
        except ModelValidationError:
            continue

        header = course.name
        if course.course_code:
            header = f"{header} ({course.course_code})"
        lines = [f"Course: {header}"]
        if course.term:
            lines.append(f"Term: {course.term}")

        grades = bundle.grades
        grade_letter = grades.current_grade or "n/a"
        lines.append(f"Current grade: {grade_letter} | score {_format_score(grades.current_score)}")

        dated = [row for row in bundle.assignments if isinstance(row.get("due_at"), str) and row.get("due_at")]
        dated.sort(key=lambda row: str(row["due_at"]))
        for row in dated[:_MAX_ASSIGNMENTS_PER_COURSE]:
            points = row.get("points_possible")
            pts_str = f"{points} pts" if points is not None else "ungraded"
            lines.append(f"assignment | {row.get('name', 'Untitled')} | due {row['due_at']} | {pts_str}")

        if bundle.quizzes:
            lines.append(f"Quizzes: {len(bundle.quizzes)}")
        if bundle.modules:
            names = ", ".join(str(row.get("name", "")) for row in bundle.modules if row.get("name"))
            if names:
                lines.append(f"Modules: {names}")

        tardiness = bundle.analytics.tardiness_breakdown
        if tardiness.total:
            lines.append(
                f"Submissions: {tardiness.on_time} on time, {tardiness.late} late, {tardiness.missing} missing"
            )
        sections.append("\n".join(lines))

    if not sections:
        return None
    return "\n\n".join(sections)


def _system_prompt(course_context: str | None) -> str:
    prompt = (
        "You are CourseCompanion, a friendly and concise AI tutor for a university student. "
        "Answer directly first, then add brief context only if needed. "
        "Use the student's Canvas course data when it is relevant and say so when it is missing."
    )
    if course_context:
        prompt = f"{prompt}\n\nCanvas course data:\n{course_context}"
    return prompt


def _extract_reply(response: Mapping[str, Any]) -> tuple[str, str]:
    output = response.get("output")
    message = output.get("message") if isinstance(output, Mapping) else None
    blocks = message.get("content") if isinstance(message, Mapping) else None
    if not isinstance(blocks, list):
        raise ChatError("model returned unreadable response")

    text_parts: list[str] = []
    reasoning_parts: list[str] = []
    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        text = block.get("text")
        if isinstance(text, str) and text.strip():
            text_parts.append(text)

        reasoning = block.get("reasoningContent")
        if isinstance(reasoning, Mapping):
            reasoning_text = reasoning.get("reasoningText")
            if isinstance(reasoning_text, Mapping):
                reasoning_text = reasoning_text.get("text")
            if isinstance(reasoning_text, str) and reasoning_text.strip():
                reasoning_parts.append(reasoning_text)

    return "\n\n".join(text_parts), "\n\n".join(reasoning_parts)


def chat_reply(
    *,
    prompt: str,
    history: Any = None,
    reasoning_budget: Any = None,
    course_context: str | None = None,
    config: ChatConfig | None = None,
) -> dict[str, Any]:
    """Send the conversation to Bedrock and return ``{"text", "reasoning"}``."""
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValueError("prompt is required")

    settings = config or ChatConfig.from_env()
    budget = _parse_budget(reasoning_budget, settings.reasoning_budget)

    messages = normalize_conversation_history(history)
    messages.append({"role": "user", "content": [{"text": prompt}]})
    messages = _merge_consecutive_roles(messages)

    client = _bedrock_runtime()
    try:
        response = client.converse(
            modelId=settings.model_id,
            messages=messages,
            system=[{"text": _system_prompt(course_context)}],
            inferenceConfig={"maxTokens": budget + _RESPONSE_TOKENS},
            additionalModelRequestFields={"thinking": {"type": "enabled", "budget_tokens": budget}},
        )
    except Exception as exc:  # pragma: no cover - boto3 service failure path
        raise ChatError(f"model invocation failed: {exc}") from exc

    text, reasoning = _extract_reply(response)
    return {
        "text": text or _FALLBACK_TEXT,
        "reasoning": reasoning or None,
    }
