"""
Tests for the relay protocol decoder
====================================
"""

import pytest

from relay_gateway.protocol import (
    CommandMessage,
    HandDataMessage,
    HeartbeatMessage,
    MessageFormatError,
    NoHandMessage,
    OtherMessage,
    ack_reply,
    connection_reply,
    error_reply,
    heartbeat_reply,
    parse_message,
)


class TestParseMessage:
    """Test suite for parse_message."""

    def test_heartbeat(self):
        assert parse_message('{"type": "heartbeat"}') == HeartbeatMessage()

    def test_hand_data(self):
        msg = parse_message('{"timestamp": 1, "hand": {"gesture": "Grab"}}')
        assert msg == HandDataMessage(hand={"gesture": "Grab"})

    def test_json_command(self):
        msg = parse_message(
            '{"base_rotation":90,"vertical_movement":45,"joint_horizontal":60,"grabber":180}'
        )
        assert msg == CommandMessage(90, 45, 60, 180)

    def test_command_is_clamped(self):
        msg = parse_message(
            '{"base_rotation":-5,"vertical_movement":999,"joint_horizontal":10,"grabber":90.5}'
        )
        assert msg == CommandMessage(0, 180, 30, 91)

    def test_text_command(self):
        text = "base_rotation,12\nvertical_movement,34\njoint_horizontal,56\ngrabber,0"
        assert parse_message(text) == CommandMessage(12, 34, 56, 0)

    def test_no_hand_json(self):
        assert parse_message('{"error": "No hand detected"}') == NoHandMessage("No hand detected")

    def test_no_hand_text(self):
        assert parse_message("error,No hand detected") == NoHandMessage("No hand detected")

    def test_other_object(self):
        assert parse_message('{"status": "ok"}') == OtherMessage({"status": "ok"})

    @pytest.mark.parametrize("data, value", [
        ("[1, 2, 3]", [1, 2, 3]),
        ("42", 42),
        ('"text"', "text"),
        ("null", None),
    ])
    def test_non_object_json_is_other(self, data, value):
        assert parse_message(data) == OtherMessage(value)

    @pytest.mark.parametrize("data", [
        "garbage",
        "",
        '{"base_rotation":"x","vertical_movement":1,"joint_horizontal":40,"grabber":0}',
        '{"base_rotation":NaN,"vertical_movement":1,"joint_horizontal":40,"grabber":0}',
    ])
    def test_malformed(self, data):
        with pytest.raises(MessageFormatError):
            parse_message(data)

    def test_command_to_json_is_compact(self):
        assert CommandMessage(1, 2, 33, 4).to_json() == (
            '{"base_rotation":1,"vertical_movement":2,"joint_horizontal":33,"grabber":4}'
        )


class TestReplies:
    """Test suite for reply envelopes."""

    def test_connection(self):
        assert connection_reply("client_3") == {
            "type": "connection", "status": "connected", "clientId": "client_3",
        }

    def test_ack(self):
        reply = ack_reply()
        assert reply["type"] == "handData"
        assert reply["status"] == "received"
        assert isinstance(reply["timestamp"], int)

    def test_heartbeat(self):
        assert heartbeat_reply()["type"] == "heartbeat"

    def test_error(self):
        assert error_reply() == {"type": "error", "message": "Invalid message format"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
