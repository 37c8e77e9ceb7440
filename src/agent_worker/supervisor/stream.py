"""Decoder for the agent's line-delimited ``stream-json`` output."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_DISPLAY_COMMAND_CHARS = 60
_EVENT_COMMAND_CHARS = 50


@dataclass(slots=True)
class ToolStatusEvent:
    """Structured tool activity reported to the controlling service."""

    event_type: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DecodedChunk:
    """Display text and tool events decoded from one stdout chunk."""

    text: str = ""
    tool_events: list[ToolStatusEvent] = field(default_factory=list)


class StreamJsonDecoder:
    """Line-buffering decoder that accumulates the agent's final output."""

    def __init__(self) -> None:
        self._pending = ""
        self._output_parts: list[str] = []
        self._final_result: str | None = None

    @property
    def output(self) -> str:
        if self._final_result is not None:
            return self._final_result
        return "".join(self._output_parts)

    def feed(self, chunk: str) -> DecodedChunk:
        self._pending += chunk
        lines = self._pending.split("\n")
        self._pending = lines.pop()
        return self._decode_lines(lines)

    def flush(self) -> DecodedChunk:
        """Decode any trailing line that arrived without a newline."""

        if not self._pending:
            return DecodedChunk()
        pending, self._pending = self._pending, ""
        return self._decode_lines([pending])

    def _decode_lines(self, lines: list[str]) -> DecodedChunk:
        decoded = DecodedChunk()
        parts: list[str] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                self._output_parts.append(line + "\n")
                parts.append(line + "\n")
                continue
            if not isinstance(event, dict):
                self._output_parts.append(line + "\n")
                parts.append(line + "\n")
                continue

            event_type = event.get("type")
            if event_type == "content_block_delta":
                text = (event.get("delta") or {}).get("text")
                if text:
                    self._output_parts.append(text)
            elif event_type == "result":
                result = event.get("result")
                if isinstance(result, str):
                    self._final_result = result

            text = format_event(event)
            if text:
                parts.append(text)
            decoded.tool_events.extend(tool_status_events(event))
        decoded.text = "".join(parts)
        return decoded


def format_event(event: dict[str, Any]) -> str | None:
    """Render a stream event as display text, or None when it has nothing to show."""

    event_type = event.get("type")
    if event_type == "content_block_delta":
        return (event.get("delta") or {}).get("text") or None
    if event_type == "error":
        message = (event.get("error") or {}).get("message") or "Unknown error"
        return f"\nError: {message}\n"
    if event_type == "text":
        return event.get("text") or None
    if event_type == "assistant":
        parts: list[str] = []
        for block in _content_blocks(event):
            if block.get("type") == "text" and (block.get("text") or "").strip():
                parts.append(block["text"])
            elif block.get("type") == "tool_use":
                parts.append(f"\n{_describe_tool(block, _DISPLAY_COMMAND_CHARS)}\n")
        return "".join(parts) or None
    if event_type not in {"user", "result", "system", "thinking", "tool_use", "tool_result"}:
        logger.debug("Unhandled stream event type: %s", event_type)
    return None


def tool_status_events(event: dict[str, Any]) -> list[ToolStatusEvent]:
    if event.get("type") != "assistant":
        return []
    events: list[ToolStatusEvent] = []
    for block in _content_blocks(event):
        if block.get("type") != "tool_use":
            continue
        name = block.get("name") or "tool"
        tool_input = block.get("input") or {}
        file_path = tool_input.get("file_path")
        if name in {"Read", "Edit", "Write"}:
            event_type = {"Read": "read_file", "Edit": "edit_file", "Write": "write_file"}[name]
            label = {"Read": "Reading", "Edit": "Editing", "Write": "Creating"}[name]
            basename = os.path.basename(file_path) if file_path else "file"
            events.append(
                ToolStatusEvent(event_type, f"{label}: {basename}", {"file": file_path}),
            )
        elif name == "Bash":
            command = tool_input.get("command") or ""
            events.append(
                ToolStatusEvent(
                    "bash_command",
                    _describe_tool(block, _EVENT_COMMAND_CHARS),
                    {"command": command[:200]},
                ),
            )
        elif name in {"Grep", "Glob"}:
            pattern = tool_input.get("pattern") or tool_input.get("glob")
            events.append(
                ToolStatusEvent("search", _describe_tool(block, 0), {"pattern": pattern}),
            )
        elif name == "Task":
            events.append(
                ToolStatusEvent(
                    "progress_update",
                    _describe_tool(block, _EVENT_COMMAND_CHARS),
                    {"subagent": tool_input.get("subagent_type")},
                ),
            )
        else:
            events.append(ToolStatusEvent("progress_update", f"Using: {name}", {"tool": name}))
    return events


def _content_blocks(event: dict[str, Any]) -> list[dict[str, Any]]:
    content = (event.get("message") or {}).get("content") or []
    return [block for block in content if isinstance(block, dict)]


def _describe_tool(block: dict[str, Any], max_chars: int) -> str:
    name = block.get("name") or "tool"
    tool_input = block.get("input") or {}
    if name == "Read":
        return f"Reading: {tool_input.get('file_path') or 'file'}"
    if name == "Edit":
        return f"Editing: {tool_input.get('file_path') or 'file'}"
    if name == "Write":
        return f"Creating: {tool_input.get('file_path') or 'file'}"
    if name == "Bash":
        command = tool_input.get("command") or "command"
        suffix = "..." if len(command) > max_chars else ""
        return f"Running: {command[:max_chars]}{suffix}"
    if name in {"Grep", "Glob"}:
        return f"Searching: {tool_input.get('pattern') or tool_input.get('glob') or 'files'}"
    if name == "Task":
        description = (tool_input.get("description") or "working...")[:max_chars]
        return f"Subtask: {description}"
    return f"Tool: {name}"
