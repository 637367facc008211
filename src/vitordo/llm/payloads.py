# src/vitordo/llm/payloads.py

"""
Prompt construction and response decoding for the task collaborator.

Both the OpenAI-compatible client and the offline client speak the same JSON
shapes, so decoding lives here and is shared.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from ..core.ports import ParseResponse, UpdateResponse
from ..core.timeutil import local_now, parse_datetime, to_iso, to_local
from ..tasks.task_models import Task, TaskInput, TaskUpdate, TimelineStatus

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that processes task management requests. "
    "Always respond with valid JSON."
)

DEFAULT_TASK_MINUTES = 30


def build_parse_prompt(user_input: str, context: Sequence[Task] = (), *, now: datetime | None = None) -> str:
    now = to_local(now) if now is not None else local_now()
    context_info = ""
    if context:
        lines = [
            f"- {t.title}: {t.status.value} ({to_iso(to_local(t.start_time))} - {to_iso(to_local(t.end_time))})"
            for t in context
        ]
        context_info = "\n\nExisting tasks for context:\n" + "\n".join(lines)

    return f"""Parse the following task input and return a JSON response with an array of tasks.

Current time: {to_iso(now)}{context_info}

User input: {json.dumps(user_input, ensure_ascii=False)}

Return a JSON object with this structure:
{{
  "tasks": [
    {{
      "title": "Brief task title",
      "description": "Detailed description",
      "startTime": "ISO date string",
      "endTime": "ISO date string",
      "status": "upcoming",
      "priority": 1-5,
      "estimatedDuration": "duration in minutes"
    }}
  ],
  "confidence": 0.0-1.0
}}

Rules:
- Times in the user input are local wall-clock times in the same UTC offset as the current time
- Return startTime and endTime as ISO date strings with that UTC offset
- If no specific time is mentioned, schedule tasks during working hours (9 AM - 5 PM)
- Default task duration is {DEFAULT_TASK_MINUTES} minutes if not specified
- Priority: 1=lowest, 5=highest (default: 3)
- Status should always be "upcoming" for new tasks
- Ensure endTime is after startTime
- If multiple tasks are mentioned, create separate entries for each"""


def build_update_prompt(user_input: str, tasks: Sequence[Task]) -> str:
    tasks_info = "\n".join(
        f'ID: {t.id}, Title: "{t.title}", Status: {t.status.value}, '
        f"Time: {to_iso(to_local(t.start_time))} - {to_iso(to_local(t.end_time))}"
        for t in tasks
    )

    return f"""Analyze the following input to identify task status updates.

Existing tasks:
{tasks_info}

User input: {json.dumps(user_input, ensure_ascii=False)}

Return a JSON object with this structure:
{{
  "statusUpdates": [
    {{
      "taskId": "task_id_if_identifiable",
      "newStatus": "completed|recently_completed|upcoming",
      "reason": "explanation of the status change",
      "confidence": 0.0-1.0
    }}
  ]
}}

Rules:
- Only return updates if the input clearly indicates task completion or status changes
- Use "recently_completed" for tasks just finished
- Use "completed" for older finished tasks
- Use "upcoming" for tasks that are reset or postponed
- If you can't identify a specific task, set taskId to null and include a general description"""


def _clamp_priority(raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 3
    return max(1, min(5, value))


def _minutes(raw: Any, default: int = DEFAULT_TASK_MINUTES) -> int:
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _load_object(content: str | None) -> dict[str, Any]:
    if not content or not content.strip():
        raise ValueError("No content in response")
    text = content.strip()
    # Some models wrap JSON in a fenced block despite response_format.
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Response is not a JSON object")
    return data


def decode_parse_content(content: str | None, *, original_input: str = "") -> ParseResponse:
    """
    Turn the model's JSON into TaskInputs.

    Items without a title or with unreadable times are rejected individually.
    An end time at or before the start is pushed to start + estimated duration.
    """
    try:
        data = _load_object(content)
    except ValueError as e:
        logger.warning("Parse response is not usable JSON: %s", e)
        return ParseResponse(success=False, error=f"Failed to parse response: {e}")

    items = data.get("tasks")
    if not isinstance(items, list):
        return ParseResponse(success=False, error="Invalid response format: missing tasks array")

    tasks: list[TaskInput] = []
    rejected: list[str] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            rejected.append(f"Task {i}: not an object")
            continue

        title = item.get("title")
        if not isinstance(title, str) or not title.strip():
            rejected.append(f"Task {i}: missing or invalid title")
            continue

        start = parse_datetime(item.get("startTime"))
        end = parse_datetime(item.get("endTime"))
        if start is None or end is None:
            rejected.append(f"Task {i}: invalid date format")
            continue

        duration = _minutes(item.get("estimatedDuration"))
        if end <= start:
            end = start + timedelta(minutes=duration)

        description = item.get("description")
        tasks.append(
            TaskInput(
                title=title.strip(),
                description=description.strip() if isinstance(description, str) and description.strip() else title.strip(),
                start_time=start,
                end_time=end,
                status=TimelineStatus.UPCOMING,
                priority=_clamp_priority(item.get("priority", 3)),
                metadata={
                    "original_input": original_input,
                    "llm_response": content,
                    "estimated_duration": duration,
                },
            )
        )

    confidence = data.get("confidence")
    return ParseResponse(
        success=True,
        tasks=tuple(tasks),
        confidence=float(confidence) if isinstance(confidence, (int, float)) else 0.8,
        rejected=tuple(rejected),
    )


def decode_update_content(content: str | None, *, now: datetime | None = None) -> UpdateResponse:
    try:
        data = _load_object(content)
    except ValueError as e:
        logger.warning("Update response is not usable JSON: %s", e)
        return UpdateResponse(success=False, error=f"Failed to parse status update response: {e}")

    items = data.get("statusUpdates")
    if not isinstance(items, list):
        return UpdateResponse(success=True)

    ts = now or local_now()
    updates: list[TaskUpdate] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        status = TimelineStatus.parse(item.get("newStatus"))
        if status is None:
            logger.debug("Skipping status update with unknown status: %r", item.get("newStatus"))
            continue
        task_id = item.get("taskId")
        updates.append(
            TaskUpdate(
                task_id=task_id if isinstance(task_id, str) else "",
                new_status=status,
                reason=str(item.get("reason") or "Status update detected"),
                timestamp=ts,
            )
        )

    return UpdateResponse(success=True, status_updates=tuple(updates))
