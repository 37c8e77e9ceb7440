from __future__ import annotations

import json

import allure

from agent_worker.supervisor import StreamJsonDecoder
from agent_worker.supervisor.stream import format_event, tool_status_events

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Stream JSON Decoding"),
]


def _line(event: dict) -> str:
    return json.dumps(event) + "\n"


def _tool_use(name: str, **tool_input: str) -> dict:
    return {
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "name": name, "input": tool_input}]},
    }


def test_deltas_split_across_chunks_are_reassembled() -> None:
    decoder = StreamJsonDecoder()
    line = _line({"type": "content_block_delta", "delta": {"text": "Hello"}})

    first = decoder.feed(line[:20])
    second = decoder.feed(line[20:])

    assert first.text == ""
    assert second.text == "Hello"
    assert decoder.output == "Hello"


def test_result_event_replaces_accumulated_deltas() -> None:
    decoder = StreamJsonDecoder()
    decoder.feed(_line({"type": "content_block_delta", "delta": {"text": "draft"}}))
    decoder.feed(_line({"type": "result", "result": "# Final PRD"}))

    assert decoder.output == "# Final PRD"


def test_non_json_lines_are_kept_as_raw_output() -> None:
    decoder = StreamJsonDecoder()

    decoded = decoder.feed("plain progress line\n[1, 2]\n")

    assert decoded.text == "plain progress line\n[1, 2]\n"
    assert decoder.output == "plain progress line\n[1, 2]\n"


def test_flush_decodes_trailing_line_without_newline() -> None:
    decoder = StreamJsonDecoder()
    decoder.feed(json.dumps({"type": "content_block_delta", "delta": {"text": "tail"}}))

    assert decoder.output == ""
    assert decoder.flush().text == "tail"
    assert decoder.output == "tail"
    assert decoder.flush().text == ""


def test_assistant_tool_use_renders_text_and_status_events() -> None:
    decoder = StreamJsonDecoder()

    decoded = decoder.feed(_line(_tool_use("Read", file_path="/home/alice/app/README.md")))

    assert decoded.text == "\nReading: /home/alice/app/README.md\n"
    assert len(decoded.tool_events) == 1
    event = decoded.tool_events[0]
    assert event.event_type == "read_file"
    assert event.message == "Reading: README.md"
    assert event.metadata == {"file": "/home/alice/app/README.md"}


def test_bash_tool_event_truncates_long_commands() -> None:
    command = "pytest " + "tests/test_module.py " * 10

    [event] = tool_status_events(_tool_use("Bash", command=command))

    assert event.event_type == "bash_command"
    assert event.message == f"Running: {command[:50]}..."
    assert event.metadata["command"] == command[:200]


def test_other_tools_map_to_search_and_progress_events() -> None:
    assert tool_status_events(_tool_use("Grep", pattern="TODO"))[0].event_type == "search"
    assert tool_status_events(_tool_use("Edit", file_path="a/b.py"))[0].message == "Editing: b.py"
    assert tool_status_events(_tool_use("Write", file_path="c.py"))[0].event_type == "write_file"
    task = tool_status_events(_tool_use("Task", description="review the diff"))[0]
    assert task.event_type == "progress_update"
    assert task.message == "Subtask: review the diff"
    assert tool_status_events(_tool_use("WebFetch"))[0].message == "Using: WebFetch"
    assert tool_status_events({"type": "result", "result": "x"}) == []


def test_format_event_shapes() -> None:
    assert format_event({"type": "error", "error": {"message": "overloaded"}}) == (
        "\nError: overloaded\n"
    )
    assert format_event({"type": "text", "text": "hi"}) == "hi"
    assert format_event({"type": "system", "subtype": "init"}) is None
    assert (
        format_event(
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Plan:"}]}},
        )
        == "Plan:"
    )
