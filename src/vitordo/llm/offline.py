# src/vitordo/llm/offline.py

from __future__ import annotations

import json
import re
from collections.abc import Callable
from datetime import datetime, timedelta

from ..core.ports import ParseRequest, ParseResponse, UpdateRequest, UpdateResponse
from ..core.timeutil import ensure_aware, parse_time_string, to_iso, to_local, utc_now
from .payloads import DEFAULT_TASK_MINUTES, decode_parse_content, decode_update_content

_RANGE_RE = re.compile(r"^(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})\s+(.+)$")
_START_RE = re.compile(r"^(?:at\s+)?(\d{1,2}:\d{2})\s+(.+)$", re.IGNORECASE)
_SPLIT_RE = re.compile(r"[;\n]+")

_DONE_WORDS = ("done", "finished", "completed", "complete")
_REOPEN_WORDS = ("reopen", "postpone", "not done", "undo")


class OfflineLLMClient:
    """
    Offline deterministic collaborator used for demos when no external API is configured.

    Behavior:
    - parse: one task per line (or ';'-separated item). "HH:MM-HH:MM title" and
      "HH:MM title" set the window in local time; anything else starts now,
      30 minutes long.
    - update: "done"/"finished" style words mark tasks whose title words appear in
      the input as recently completed; "reopen"/"postpone" moves them back to upcoming.

    Output goes through the same JSON decoding as the real client.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    async def parse(self, request: ParseRequest) -> ParseResponse:
        # Typed times are wall-clock times in the local zone.
        now = to_local(self._clock())
        items = []
        for chunk in _SPLIT_RE.split(request.input or ""):
            text = chunk.strip()
            if not text:
                continue

            start: datetime | None = None
            end: datetime | None = None
            title = text

            m = _RANGE_RE.match(text)
            if m:
                start = parse_time_string(m.group(1), base=now)
                end = parse_time_string(m.group(2), base=now)
                title = m.group(3)
            else:
                m = _START_RE.match(text)
                if m:
                    start = parse_time_string(m.group(1), base=now)
                    title = m.group(2)

            if start is None:
                start = now
            if end is None or end <= start:
                end = start + timedelta(minutes=DEFAULT_TASK_MINUTES)

            items.append(
                {
                    "title": title.strip(),
                    "description": text,
                    "startTime": to_iso(start),
                    "endTime": to_iso(end),
                    "status": "upcoming",
                    "priority": 3,
                    "estimatedDuration": int((end - start).total_seconds() // 60),
                }
            )

        content = json.dumps({"tasks": items, "confidence": 0.5})
        return decode_parse_content(content, original_input=request.input)

    async def update(self, request: UpdateRequest) -> UpdateResponse:
        text = (request.input or "").lower()

        if any(w in text for w in _REOPEN_WORDS):
            new_status = "upcoming"
        elif any(w in text for w in _DONE_WORDS):
            new_status = "recently_completed"
        else:
            return UpdateResponse(success=True)

        words = {w for w in re.findall(r"\w+", text) if len(w) > 2}
        updates = []
        for task in request.context:
            title_words = {w for w in re.findall(r"\w+", task.title.lower()) if len(w) > 2}
            if title_words & words:
                updates.append(
                    {
                        "taskId": task.id,
                        "newStatus": new_status,
                        "reason": f"Offline match on: {request.input.strip()}",
                        "confidence": 0.5,
                    }
                )

        if not updates:
            updates.append(
                {
                    "taskId": None,
                    "newStatus": new_status,
                    "reason": request.input.strip(),
                    "confidence": 0.3,
                }
            )

        return decode_update_content(json.dumps({"statusUpdates": updates}), now=ensure_aware(self._clock()))
