"""Tests for notepad_sync.protocol."""

import json

import pytest

from notepad_sync.protocol import (
    Message,
    ProtocolError,
    decode_message,
    encode_message,
    MSG_MUTATION,
    MSG_MUTATION_RESULT,
    MSG_SUBSCRIBE,
)


class TestMessage:
    def test_new_message_gets_fresh_id(self):
        msg = Message(MSG_SUBSCRIBE, {"query": "notes:list"})
        assert len(msg.id) == 32
        assert msg.reply_to is None
        assert Message(MSG_SUBSCRIBE).id != msg.id

    def test_answer_points_back(self):
        req = Message(MSG_MUTATION)
        reply = req.answer(MSG_MUTATION_RESULT, {"result": "abc"})
        assert reply.reply_to == req.id
        assert reply.payload == {"result": "abc"}
        assert reply.id != req.id


class TestEncoding:
    def test_request_frame_has_only_envelope_keys(self):
        msg = Message(MSG_SUBSCRIBE, {"query": "notes:list"})
        data = json.loads(encode_message(msg))
        assert data == {"type": MSG_SUBSCRIBE, "id": msg.id, "payload": {"query": "notes:list"}}

    def test_decode_accepts_bytes(self):
        msg = Message(MSG_MUTATION, {"name": "notes:create"})
        assert decode_message(encode_message(msg).encode()) == msg

    def test_decode_keeps_reply_to(self):
        req = Message(MSG_MUTATION)
        reply = req.answer(MSG_MUTATION_RESULT)
        assert decode_message(encode_message(reply)).reply_to == req.id

    @pytest.mark.parametrize("raw, error", [
        ("not json", "invalid JSON"),
        ("[1, 2]", "JSON object"),
        ('{"id": "1", "payload": {}}', "'type'"),
        ('{"type": "x", "id": "1"}', "'payload'"),
        ('{"type": "x", "id": "1", "payload": []}', "'payload'"),
        ('{"type": "x", "id": "1", "payload": {}, "reply_to": 7}', "'reply_to'"),
    ])
    def test_decode_rejects(self, raw, error):
        with pytest.raises(ProtocolError, match=error):
            decode_message(raw)
