from __future__ import annotations

import json
from datetime import datetime

import pytest
from pydantic import ValidationError

from tripbus.events import ErrorEvent, ErrorSeverity, ProgressEvent
from tripbus.protocol import (
    ClientAction,
    ClientFrame,
    InvalidTopicError,
    MessageType,
    chat_send_target,
    chat_topic,
    create_error,
    parse_chat_send_target,
    progress_topic,
    validate_subscribable,
)


@pytest.mark.parametrize(
    "topic",
    ["progress.exec-42", "chat.trip-7", "itinerary.trip-7"],
)
def test_subscribable_topics(topic):
    assert validate_subscribable(topic) == topic


@pytest.mark.parametrize(
    "topic",
    [None, "", "chat.send.trip-7", "weather.paris", "progress.", "chat.  ", "itinerary.send.trip-7"],
)
def test_rejected_topics(topic):
    with pytest.raises(InvalidTopicError):
        validate_subscribable(topic)


def test_chat_send_target():
    assert parse_chat_send_target("chat.send.trip-7") == "trip-7"

    with pytest.raises(InvalidTopicError):
        parse_chat_send_target("chat.trip-7")
    with pytest.raises(InvalidTopicError):
        parse_chat_send_target("chat.send.")
    with pytest.raises(InvalidTopicError):
        parse_chat_send_target("chat.send.send.trip-7")


def test_topic_builders():
    assert progress_topic("exec-1") == "progress.exec-1"
    assert chat_topic("trip-1") == "chat.trip-1"
    with pytest.raises(InvalidTopicError):
        progress_topic("")
    with pytest.raises(InvalidTopicError):
        chat_topic("send.trip-1")
    with pytest.raises(InvalidTopicError):
        chat_send_target("send.trip-1")
    assert progress_topic("send.exec-1") == "progress.send.exec-1"


def test_envelope_wire_shape():
    envelope = ProgressEvent(execution_id="exec-1", phase="done").to_envelope()
    data = json.loads(envelope.to_json())

    assert set(data) == {"type", "topic", "payload", "timestamp"}
    assert data["type"] == "progress"
    assert data["topic"] == "progress.exec-1"
    parsed = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
    assert parsed.tzinfo is not None


def test_error_envelope_payload():
    envelope = create_error("weather.x", "INVALID_TOPIC", "unknown prefix")

    assert envelope.type == MessageType.ERROR
    assert envelope.payload == {
        "error_code": "INVALID_TOPIC",
        "error_message": "unknown prefix",
        "details": {},
    }


def test_error_event_recoverability():
    retryable = ErrorEvent(topic="chat.t", error_code="X", message="m")
    critical = ErrorEvent(
        topic="chat.t",
        error_code="X",
        message="m",
        severity=ErrorSeverity.CRITICAL,
    )

    assert retryable.is_recoverable
    assert not critical.is_recoverable
    assert "recovery_action" not in retryable.to_payload()


def test_client_frame_parsing():
    frame = ClientFrame.model_validate_json('{"action": "subscribe", "topic": "chat.trip-1"}')
    assert frame.action == ClientAction.SUBSCRIBE
    assert frame.payload == {}

    with pytest.raises(ValidationError):
        ClientFrame.model_validate_json('{"action": "explode"}')
    with pytest.raises(ValidationError):
        ClientFrame.model_validate_json("not json")


def test_progress_percent_bounds():
    with pytest.raises(ValidationError):
        ProgressEvent(execution_id="exec-1", phase="x", progress_percent=120)


def test_chat_send_target_builder():
    target = chat_send_target("trip-7")
    assert target == "chat.send.trip-7"
    assert parse_chat_send_target(target) == "trip-7"
