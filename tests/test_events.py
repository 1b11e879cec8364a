import json

from branching_chat.orchestration.accumulator import INTERRUPTED_CONTENT, TurnAccumulator, error_content
from branching_chat.orchestration.events import EventType, StreamEvent


def test_events_are_framed_as_single_sse_messages():
    encoded = StreamEvent.chunk("t1", "openai", "line one\nline two").encode()

    text = encoded.decode("utf-8")
    assert text.startswith("data: ")
    assert text.endswith("\n\n")
    assert text.count("\n\n") == 1
    assert json.loads(text[len("data: "):]) == {
        "event": "chunk",
        "data": {"id": "t1", "model": "openai", "content": "line one\nline two"},
    }


def test_done_carries_no_data():
    assert StreamEvent.done().to_dict() == {"event": "done"}


def test_turn_start_links_parent():
    event = StreamEvent.turn_start("a1", "claude", "u1")
    assert event.event == EventType.TURN_START
    assert event.data == {"id": "a1", "model": "claude", "parentTurnId": "u1"}


def test_error_without_turn():
    assert StreamEvent.error("grok", "could not create turn").data == {"model": "grok", "error": "could not create turn"}


class TestTurnAccumulator:
    def test_concatenates_in_order(self):
        accumulator = TurnAccumulator("t1", "openai")
        for chunk in ["The ", "answer ", "is 4."]:
            accumulator.append(chunk)

        assert accumulator.chunk_count == 3
        assert accumulator.text == "The answer is 4."
        assert accumulator.partial_content() == "The answer is 4."

    def test_partial_content_of_empty_turn(self):
        assert TurnAccumulator("t1", "openai").partial_content() == INTERRUPTED_CONTENT

    def test_error_content(self):
        assert error_content("credential not configured") == "Error: credential not configured"
