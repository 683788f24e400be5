"""Tests for gateway message normalization."""

import base64
from unittest.mock import patch

from helpers import GROUP, PEER, raw_message
from wabridge.whatsapp.normalizer import (
    REVOKED_PLACEHOLDER,
    classify,
    extract_text,
    message_timestamp_ms,
    normalize_message,
    unwrap_content,
)


class TestNormalizeMessage:
    """normalize_message() builds a record or discards."""

    def test_plain_text(self):
        record = normalize_message(raw_message("M1", text="hi there"), PEER)

        assert record.id == "M1"
        assert record.chat_id == PEER
        assert record.content == "hi there"
        assert record.type == "text"
        assert record.has_media is False
        assert record.media_meta is None
        assert record.timestamp == 1700000000000

    def test_extended_text(self):
        raw = raw_message("M2", message={"extendedTextMessage": {"text": "with link"}})

        assert normalize_message(raw, PEER).content == "with link"

    def test_empty_message_is_discarded(self):
        assert normalize_message(raw_message("M3", text=None), PEER) is None

    def test_unknown_payload_is_discarded(self):
        raw = raw_message("M4", message={"pollCreationMessage": {"name": "?"}})

        assert normalize_message(raw, PEER) is None

    def test_image_without_caption_gets_placeholder_and_media(self):
        raw = raw_message(
            "M5",
            message={
                "imageMessage": {
                    "url": "https://mmg.example/img",
                    "mimetype": "image/jpeg",
                    "mediaKey": b"\x01\x02\x03",
                    "fileLength": "2048",
                }
            },
        )

        record = normalize_message(raw, PEER)

        assert record.type == "image"
        assert record.content == "[Image]"
        assert record.has_media is True
        assert record.media_meta.mimetype == "image/jpeg"
        assert record.media_meta.media_key == base64.b64encode(b"\x01\x02\x03").decode()
        assert record.media_meta.file_length == 2048
        assert record.media_meta.iv is None

    def test_image_caption_wins_over_placeholder(self):
        raw = raw_message("M6", message={"imageMessage": {"caption": "beach", "url": "u"}})

        record = normalize_message(raw, PEER)

        assert record.content == "beach"
        assert record.has_media is True

    def test_audio_and_sticker_placeholders(self):
        audio = normalize_message(raw_message("M7", message={"audioMessage": {"url": "u"}}), PEER)
        sticker = normalize_message(raw_message("M8", message={"stickerMessage": {"url": "u"}}), PEER)

        assert audio.content == "[Audio]"
        assert audio.type == "audio"
        assert sticker.content == "[Sticker]"

    def test_missing_timestamp_uses_now(self):
        with patch("wabridge.whatsapp.normalizer.now_seconds", return_value=1800000000):
            record = normalize_message(raw_message("M9", timestamp=None), PEER)

        assert record.timestamp == 1800000000000

    def test_sender_defaults_to_remote_jid(self):
        record = normalize_message(raw_message("M10"), PEER)

        assert record.sender_id == PEER

    def test_sender_prefers_participant(self):
        raw = raw_message("M11", remote_jid=GROUP, participant=PEER)

        assert normalize_message(raw, GROUP).sender_id == PEER

    def test_sender_falls_back_to_chat_id(self):
        raw = raw_message("M12")
        del raw["key"]["remoteJid"]

        assert normalize_message(raw, PEER).sender_id == PEER

    def test_from_me_and_ack(self):
        raw = raw_message("M13", from_me=True)
        raw["status"] = 3

        record = normalize_message(raw, PEER)

        assert record.from_me is True
        assert record.ack == 3

    def test_revoke_placeholder(self):
        raw = raw_message("M14", message={"protocolMessage": {"type": 0, "key": {"id": "M1"}}})

        record = normalize_message(raw, PEER)

        assert record.type == "protocol"
        assert record.content == REVOKED_PLACEHOLDER

    def test_reaction_text(self):
        raw = raw_message("M15", message={"reactionMessage": {"text": "👍"}})

        record = normalize_message(raw, PEER)

        assert record.type == "reaction"
        assert record.content == "[Reaction: 👍]"

    def test_empty_reaction_is_discarded(self):
        raw = raw_message("M16", message={"reactionMessage": {"text": ""}})

        assert normalize_message(raw, PEER) is None

    def test_ephemeral_wrapper_is_unwrapped(self):
        raw = raw_message(
            "M17",
            message={"ephemeralMessage": {"message": {"conversation": "self-destructing"}}},
        )

        assert normalize_message(raw, PEER).content == "self-destructing"

    def test_missing_id_returns_none(self):
        raw = raw_message("M18")
        del raw["key"]["id"]

        assert normalize_message(raw, PEER) is None

    def test_malformed_payload_returns_none(self):
        assert normalize_message({"key": "not-a-dict"}, PEER) is None

    def test_row_shape(self):
        row = normalize_message(raw_message("M19"), PEER).to_row()

        assert set(row) == {
            "id",
            "chat_id",
            "sender_id",
            "content",
            "timestamp",
            "from_me",
            "type",
            "has_media",
            "media_meta",
            "ack",
        }


class TestHelpers:
    def test_classify_priority(self):
        assert classify({"imageMessage": {"x": 1}, "conversation": "t"}) == "image"
        assert classify({"conversation": "t"}) == "text"

    def test_extract_text_order(self):
        content = {"conversation": "first", "extendedTextMessage": {"text": "second"}}
        assert extract_text(content) == "first"

    def test_unwrap_nested(self):
        content = {"viewOnceMessageV2": {"message": {"ephemeralMessage": {"message": {"conversation": "x"}}}}}
        assert unwrap_content(content) == {"conversation": "x"}

    def test_unwrap_none(self):
        assert unwrap_content(None) == {}

    def test_timestamp_seconds_to_ms(self):
        assert message_timestamp_ms(1700000000) == 1700000000000
        assert message_timestamp_ms("1700000000") == 1700000000000

    def test_timestamp_invalid_uses_now(self):
        with patch("wabridge.whatsapp.normalizer.now_seconds", return_value=42):
            assert message_timestamp_ms("garbage") == 42000
            assert message_timestamp_ms(0) == 42000
