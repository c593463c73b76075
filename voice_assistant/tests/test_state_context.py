"""Tests for the message log, attachments and session context."""

import base64

import pytest

from voice_assistant.errors import ValidationError
from voice_assistant.metrics.recorder import estimate_tokens
from voice_assistant.state.attachments import (
    DOCX_TYPE,
    PDF_TYPE,
    load_attachment,
    load_attachment_file,
    register_extractor,
    unregister_extractor,
)
from voice_assistant.state.context import (
    CONTEXT_INTRO,
    PRIMING_ACKNOWLEDGEMENT,
    InlineDataPart,
    SessionContext,
    TextPart,
    build_session_context,
)
from voice_assistant.state.conversation import ConversationState, MessageStatus, Role


class TestConversationState:
    """Test the ordered message log."""

    def setup_method(self):
        self.state = ConversationState()

    def test_user_then_placeholder(self):
        user = self.state.add_user_message("Hello")
        placeholder = self.state.add_assistant_placeholder()

        assert [m.role for m in self.state] == [Role.USER, Role.ASSISTANT]
        assert user.status == MessageStatus.COMPLETE
        assert placeholder.status == MessageStatus.PENDING
        assert placeholder.text == ""
        assert placeholder.id > user.id

    def test_remove(self):
        self.state.add_user_message("Hello")
        placeholder = self.state.add_assistant_placeholder()

        assert self.state.remove(placeholder.id) is True
        assert self.state.remove(placeholder.id) is False
        assert len(self.state) == 1

    def test_ids_stay_unique_across_clear(self):
        first = self.state.add_user_message("one")
        self.state.clear()
        second = self.state.add_user_message("two")

        assert len(self.state) == 1
        assert second.id > first.id

    def test_streaming_message(self):
        assert self.state.streaming_message() is None
        placeholder = self.state.add_assistant_placeholder()
        placeholder.status = MessageStatus.STREAMING
        assert self.state.streaming_message() is placeholder

    def test_to_list(self):
        self.state.add_user_message("Hello")
        data = self.state.to_list()
        assert data[0]["role"] == "user"
        assert data[0]["status"] == "complete"
        assert data[0]["text"] == "Hello"


class TestLoadAttachment:
    """Test attachment validation and conversion."""

    def teardown_method(self):
        unregister_extractor(PDF_TYPE)
        unregister_extractor(DOCX_TYPE)

    def test_plain_text(self):
        attachment = load_attachment("notes.txt", b"remember the milk")
        assert attachment.is_text
        assert attachment.data == "remember the milk"
        assert attachment.mime_type == "text/plain"

    def test_image_is_base64(self):
        attachment = load_attachment("photo.png", b"\x89PNG\r\n")
        assert attachment.is_image
        assert base64.b64decode(attachment.data) == b"\x89PNG\r\n"

    def test_too_large(self):
        with pytest.raises(ValidationError, match="too large"):
            load_attachment("big.txt", b"x" * (2 * 1024 * 1024), max_size_mb=1)

    def test_legacy_doc_has_directive_message(self):
        with pytest.raises(ValidationError, match=r"\.docx or \.pdf"):
            load_attachment("old.doc", b"\xd0\xcf\x11\xe0")

    def test_unsupported_type(self):
        with pytest.raises(ValidationError, match="not supported"):
            load_attachment("archive.zip", b"PK\x03\x04")

    def test_pdf_without_extractor(self):
        with pytest.raises(ValidationError, match="No text extractor"):
            load_attachment("report.pdf", b"%PDF-1.7")

    def test_pdf_with_extractor(self):
        register_extractor(PDF_TYPE, lambda data: "  extracted text \n")
        attachment = load_attachment("report.pdf", b"%PDF-1.7")
        assert attachment.is_text
        assert attachment.data == "extracted text"

    def test_failing_extractor(self):
        def broken(data):
            raise RuntimeError("corrupt")

        register_extractor(DOCX_TYPE, broken)
        with pytest.raises(ValidationError, match="Could not read document"):
            load_attachment("letter.docx", b"PK", mime_type=DOCX_TYPE)

    def test_invalid_utf8(self):
        with pytest.raises(ValidationError, match="Could not read text file"):
            load_attachment("bad.txt", b"\xff\xfe\xfa")

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "context.txt"
        path.write_text("file contents", encoding="utf-8")
        attachment = load_attachment_file(path)
        assert attachment.name == "context.txt"
        assert attachment.data == "file contents"


class TestSessionContext:
    """Test priming context construction."""

    def test_no_personalization_no_attachments(self):
        context = build_session_context("Be brief.")
        assert context.priming_parts == ()
        assert not context.has_priming

    def test_whitespace_personalization_counts_as_empty(self):
        assert build_session_context("Be brief.", "   \n").priming_parts == ()

    def test_text_parts_are_merged(self):
        notes = load_attachment("notes.txt", b"Line one")
        context = build_session_context("Be brief.", "My name is Sam.", [notes])

        assert len(context.priming_parts) == 1
        text = context.priming_parts[0].text
        assert text.startswith(CONTEXT_INTRO + "My name is Sam.")
        assert "--- Start of attached file: notes.txt ---\nLine one\n" in text
        assert text.endswith("--- End of attached file: notes.txt ---")

    def test_images_follow_text(self):
        image = load_attachment("photo.jpg", b"jpegdata")
        context = build_session_context("Be brief.", "", [image])

        assert isinstance(context.priming_parts[0], TextPart)
        assert context.priming_parts[0].text == CONTEXT_INTRO
        assert context.priming_parts[1] == InlineDataPart("image/jpeg", image.data)

    def test_context_is_immutable(self):
        context = build_session_context("Be brief.", "Sam")
        with pytest.raises(AttributeError):
            context.system_instruction = "changed"

    def test_token_estimate_covers_every_part(self):
        context = SessionContext(
            "system prompt",
            (TextPart("some priming text"), InlineDataPart("image/png", "QUJDRA==")),
        )
        assert context.estimate_tokens() == (
            estimate_tokens("system prompt")
            + estimate_tokens("some priming text")
            + estimate_tokens("QUJDRA==")
            + estimate_tokens(PRIMING_ACKNOWLEDGEMENT)
        )

    def test_token_estimate_without_priming(self):
        context = SessionContext("system prompt")
        assert context.estimate_tokens() == estimate_tokens("system prompt")
