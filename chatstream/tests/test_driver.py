"""Tests for the stream driver: wire bytes in, ordered events and a terminal state out."""

import asyncio
from types import SimpleNamespace

import httpx
import pytest

from chatstream.core.events import ToolStatus
from chatstream.decoder import CancellationToken, SessionState, StreamDriver
from chatstream.decoder.transport import stream_response
from chatstream.protocol.encoder import StreamEncoder

DONE = b't:{"type":"stream_done"}\n'


def _driver(**kwargs):
    kwargs.setdefault("debounce_ms", 1)
    return StreamDriver(**kwargs)


def _dump(driver):
    return [event.model_dump() for event in driver.events]


@pytest.mark.asyncio
async def test_text_stream_completes():
    driver = _driver()
    state = await driver.begin(
        stream_response([b'f:{"messageId":"m1"}\n', b'0:"Hello"\n', b'0:" world"\n', DONE])
    )
    assert state is SessionState.COMPLETED
    assert not driver.streaming
    events = driver.events
    assert len(events) == 1
    assert events[0].type == "assistant"
    assert events[0].id == "m1"
    assert events[0].content == "Hello world"


@pytest.mark.asyncio
async def test_stream_without_done_marker_times_out():
    driver = _driver()
    state = await driver.begin(stream_response([b'0:"test"\n']))
    assert state is SessionState.TIMED_OUT
    assert driver.timed_out
    assert not driver.streaming
    assert driver.events[0].content == "test"
    assert driver.events[0].id == "assistant-1"


@pytest.mark.asyncio
async def test_http_error_status_adds_single_error():
    driver = _driver()
    state = await driver.begin(stream_response([], status_code=500))
    assert state is SessionState.ERRORED
    assert [e.type for e in driver.events] == ["error"]
    assert driver.events[0].message == "Request failed with status 500: Internal Server Error"


@pytest.mark.asyncio
async def test_response_without_body_reader():
    driver = _driver()
    response = SimpleNamespace(status_code=200, reason_phrase="OK", is_success=True, headers={})
    state = await driver.begin(response)
    assert state is SessionState.ERRORED
    assert driver.events[0].message == "Failed to get response stream reader"


@pytest.mark.asyncio
async def test_read_error_keeps_received_text():
    async def chunks():
        yield b'0:"partial"\n'
        raise RuntimeError("connection reset")

    driver = _driver()
    state = await driver.begin(stream_response(chunks()))
    assert state is SessionState.ERRORED
    assert [(e.type, getattr(e, "content", None) or getattr(e, "message", None)) for e in driver.events] == [
        ("assistant", "partial"),
        ("error", "connection reset"),
    ]


@pytest.mark.asyncio
async def test_cancel_mid_stream_stops_all_mutation():
    never = asyncio.Event()

    async def chunks():
        yield b'f:{"messageId":"m1"}\n0:"Hel'
        await never.wait()
        yield b'lo"\n'

    driver = _driver()
    task = asyncio.create_task(driver.begin(stream_response(chunks())))
    await asyncio.sleep(0.02)
    assert driver.streaming
    driver.cancel()
    state = await asyncio.wait_for(task, timeout=1)
    assert state is SessionState.CANCELLED
    assert driver.events == []
    await asyncio.sleep(0.02)
    assert driver.events == []


@pytest.mark.asyncio
async def test_pre_cancelled_token_never_reads():
    token = CancellationToken()
    token.cancel()
    driver = _driver(token=token)
    state = await driver.begin(stream_response([b'0:"ignored"\n', DONE]))
    assert state is SessionState.CANCELLED
    assert driver.events == []


@pytest.mark.asyncio
async def test_driver_is_single_use():
    driver = _driver()
    await driver.begin(stream_response([DONE]))
    with pytest.raises(RuntimeError):
        await driver.begin(stream_response([DONE]))


@pytest.mark.asyncio
async def test_malformed_frames_are_skipped():
    driver = _driver()
    state = await driver.begin(
        stream_response([b"t:not json\n", b"t:\n", b"garbage line\n", b'0:"ok"\n', DONE])
    )
    assert state is SessionState.COMPLETED
    assert [(e.type, e.content) for e in driver.events] == [("assistant", "ok")]


@pytest.mark.asyncio
async def test_frames_split_across_chunks_and_multibyte_characters():
    data = 'f:{"messageId":"m"}\n0:"héllo wörld ✓"\n'.encode("utf-8") + DONE
    driver = _driver()
    state = await driver.begin(stream_response([data[i : i + 1] for i in range(len(data))]))
    assert state is SessionState.COMPLETED
    assert driver.events[0].content == "héllo wörld ✓"


@pytest.mark.asyncio
async def test_interleaved_message_ids_keep_separate_entries():
    data = b'f:{"messageId":"a"}\n0:"one"\nf:{"messageId":"b"}\n0:"two"\n' + DONE
    driver = _driver()
    await driver.begin(stream_response([data]))
    assert [(e.id, e.content) for e in driver.events] == [("a", "one"), ("b", "two")]


@pytest.mark.asyncio
async def test_replaying_a_stream_reproduces_events():
    data = (
        b'0:"Looking that up."\n'
        b't:{"type":"mcp_call_added","itemId":"mcp_1","serverLabel":"docs","toolName":"search"}\n'
        b't:{"type":"mcp_call_completed","itemId":"mcp_1"}\n'
        b'0:"Found it."\n' + DONE
    )
    first, second = _driver(), _driver()
    await first.begin(stream_response([data]))
    await second.begin(stream_response([data[:7], data[7:40], data[40:]]))
    assert _dump(first) == _dump(second)
    assert [e.type for e in first.events] == ["assistant", "tool_call"]
    assert first.events[0].content == "Looking that up.Found it."


@pytest.mark.asyncio
async def test_request_id_header_is_recorded():
    driver = _driver()
    await driver.begin(stream_response([DONE], headers={"x-request-id": "req-123"}))
    assert driver.request_id == "req-123"


@pytest.mark.asyncio
async def test_error_frame_and_tool_frames_flush_text_first():
    data = (
        b'f:{"messageId":"m1"}\n0:"Let me check"\n'
        b't:{"type":"mcp_call_in_progress","itemId":"mcp_1"}\n'
        b'e:{"type":"error","message":"Model overloaded"}\n' + DONE
    )
    driver = _driver()
    await driver.begin(stream_response([data]))
    assert [e.type for e in driver.events] == ["assistant", "tool_call", "error"]
    assert driver.events[1].status is ToolStatus.IN_PROGRESS
    assert driver.events[2].message == "Model overloaded"


@pytest.mark.asyncio
async def test_content_part_done_replaces_assistant_text():
    data = (
        b'f:{"messageId":"m1"}\n0:"Hel"\n'
        b'{"type":"content-part-done","item_id":"m1","part":{"type":"output_text","text":"Hello",'
        b'"annotations":[{"file_id":"f1","filename":"a.png"}]}}\n' + DONE
    )
    driver = _driver()
    await driver.begin(stream_response([data]))
    assert len(driver.events) == 1
    assert driver.events[0].content == "Hello"
    assert driver.events[0].file_annotations[0].file_id == "f1"


@pytest.mark.asyncio
async def test_full_reasoning_frame_is_queued_until_flush():
    data = b'0:"Answer"\nt:{"type":"reasoning","summary":"plan","effort":"low"}\n' + DONE
    driver = _driver()
    await driver.begin(stream_response([data]))
    assert [e.type for e in driver.events] == ["assistant", "reasoning"]
    assert driver.events[1].summary == "plan"


@pytest.mark.asyncio
async def test_mcp_ui_resource_adds_assistant_entry():
    data = (
        b't:{"type":"mcp_call_completed","itemId":"m",'
        b'"content":[{"type":"resource","resource":{"uri":"ui://widget/1"}}]}\n' + DONE
    )
    driver = _driver()
    await driver.begin(stream_response([data]))
    events = driver.events
    assert [e.type for e in events] == ["assistant", "tool_call"]
    assert events[0].mcp_content[0]["resource"]["uri"] == "ui://widget/1"
    assert events[1].content == events[0].mcp_content


def test_add_user_message():
    driver = _driver()
    event = driver.add_user_message("  hi there  ")
    assert event.content == "hi there"
    assert event.id == "user-1"
    assert driver.add_user_message("   ") is None
    assert [e.type for e in driver.events] == ["user"]


def test_handle_error():
    driver = _driver()
    driver.handle_error(httpx.ConnectError("connection refused"))
    driver.handle_error(RuntimeError())
    assert driver.state is SessionState.ERRORED
    assert [e.message for e in driver.events] == [
        "connection refused",
        "An error occurred while sending your message",
    ]


@pytest.mark.asyncio
async def test_clear_resets_terminal_state_for_next_turn():
    driver = _driver()
    await driver.begin(stream_response([b'0:"x"\n'], headers={"x-request-id": "req-1"}))
    assert driver.timed_out
    driver.clear()
    assert driver.events == []
    assert not driver.timed_out
    assert driver.state is SessionState.IDLE
    assert driver.request_id is None
    state = await driver.begin(stream_response([b'0:"again"\n', DONE]))
    assert state is SessionState.COMPLETED
    assert [e.content for e in driver.events] == ["again"]


@pytest.mark.asyncio
async def test_listener_sees_each_mutation():
    snapshots = []
    driver = _driver(listener=snapshots.append)
    driver.add_user_message("hi")
    await driver.begin(stream_response([b'0:"Hello."\n', DONE]))
    assert len(snapshots) == 2
    assert [e.type for e in snapshots[-1]] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_encoder_output_decodes_end_to_end():
    provider_events = [
        {"type": "response.output_text.delta", "delta": "Hello"},
        {"type": "response.output_text.delta", "delta": " there."},
        {
            "type": "response.output_item.added",
            "item": {"type": "mcp_call", "id": "mcp_1", "server_label": "docs", "name": "search"},
        },
        {"type": "response.mcp_call_arguments.done", "item_id": "mcp_1", "arguments": '{"q":"x"}'},
        {"type": "response.mcp_call.completed", "item_id": "mcp_1"},
        {"type": "response.output_text.delta", "delta": " Done."},
    ]
    encoder = StreamEncoder(message_id="msg-1")
    driver = _driver()
    state = await driver.begin(stream_response(encoder.encode(provider_events)))
    assert state is SessionState.COMPLETED
    events = driver.events
    assert [e.type for e in events] == ["assistant", "tool_call"]
    assert events[0].id == "msg-1"
    assert events[0].content == "Hello there. Done."
    assert events[1].status is ToolStatus.COMPLETED
    assert events[1].tool_name == "search"
    assert events[1].arguments == {"q": "x"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bad_line",
    [
        b'{"type":"content-part-done","item_id":"m1","part":{"text":5}}\n',
        b'{"type":"content-part-done","item_id":"m1","part":{"text":"Hi","annotations":[{"start_index":"abc"}]}}\n',
        b'{"type":"content-part-done","item_id":"","part":{"text":"Hi"}}\n',
        b't:{"type":"mcp_call_completed","itemId":"c1","content":[{"type":"resource","resource":"ui://x"}]}\n',
    ],
)
async def test_badly_shaped_frames_do_not_end_the_turn(bad_line):
    data = b'f:{"messageId":"m1"}\n0:"Hello"\n' + bad_line + b'0:" world"\n' + DONE
    driver = _driver()
    state = await driver.begin(stream_response([data]))
    assert state is SessionState.COMPLETED
    assert driver.events[0].content == "Hello world"
    assert all(e.type in ("assistant", "tool_call") for e in driver.events)


@pytest.mark.asyncio
async def test_frame_that_fails_to_apply_is_skipped(monkeypatch):
    from chatstream.decoder import mergers

    def broken(log, data):
        raise KeyError("boom")

    monkeypatch.setattr(mergers, "add_error", broken)
    driver = _driver()
    state = await driver.begin(stream_response([b'e:{"type":"error","message":"x"}\n0:"still here"\n', DONE]))
    assert state is SessionState.COMPLETED
    assert [e.content for e in driver.events] == ["still here"]


@pytest.mark.asyncio
async def test_process_line_inside_running_loop():
    driver = _driver(debounce_ms=1)
    driver.process_line('f:{"messageId":"m1"}')
    driver.process_line('0:"direct"')
    await asyncio.sleep(0.02)
    assert [(e.id, e.content) for e in driver.events] == [("m1", "direct")]
