"""Tests for the Gemini gateway and transcriber."""

import asyncio
import base64
import os
from unittest.mock import AsyncMock, MagicMock, patch

import google.generativeai as genai
import pytest
from google.api_core import exceptions as google_exceptions

from voice_assistant.errors import ConfigurationError, TransportError
from voice_assistant.providers.ai.gemini import GeminiChatHandle, GeminiGateway, build_history
from voice_assistant.providers.transcription.gemini import TRANSCRIPTION_PROMPT, GeminiTranscriber
from voice_assistant.state.context import PRIMING_ACKNOWLEDGEMENT, InlineDataPart, TextPart


class FakeChunk:
    def __init__(self, text=None):
        self._text = text

    @property
    def text(self):
        if self._text is None:
            raise ValueError("no text parts")
        return self._text


class FakeStream:
    """Async iterable standing in for a streamed generate response."""

    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


async def collect(handle, text):
    return [delta async for delta in handle.stream_turn(text)]


class TestBuildHistory:
    """Test priming history construction."""

    def test_empty(self):
        assert build_history(()) == []

    def test_parts_and_acknowledgement(self):
        data = base64.b64encode(b"image-bytes").decode("ascii")
        history = build_history((TextPart("context"), InlineDataPart("image/png", data)))

        assert history[0]["role"] == "user"
        assert history[0]["parts"][0] == {"text": "context"}
        assert history[0]["parts"][1] == {
            "inline_data": {"mime_type": "image/png", "data": b"image-bytes"}
        }
        assert history[1] == {"role": "model", "parts": [{"text": PRIMING_ACKNOWLEDGEMENT}]}


class TestGeminiGateway:
    """Test opening Gemini chat sessions."""

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_api_key(self):
        gateway = GeminiGateway()
        with pytest.raises(ConfigurationError, match="GOOGLE_API_KEY"):
            gateway.open("Be brief.", ())

    @patch.dict(os.environ, {"GOOGLE_API_KEY": "test-key"})
    @patch("google.generativeai.configure")
    @patch("google.generativeai.GenerativeModel")
    def test_open_primes_history(self, mock_model_class, mock_configure):
        mock_model = MagicMock()
        mock_model_class.return_value = mock_model

        gateway = GeminiGateway(model_name="gemini-2.5-flash")
        handle = gateway.open("Be brief.", (TextPart("context"),))

        mock_configure.assert_called_once_with(api_key="test-key")
        mock_model_class.assert_called_once_with(
            model_name="gemini-2.5-flash", system_instruction="Be brief."
        )
        history = mock_model.start_chat.call_args.kwargs["history"]
        assert len(history) == 2
        assert isinstance(handle, GeminiChatHandle)
        assert gateway.get_status()["sessions_opened"] == 1

    @patch.dict(os.environ, {"GOOGLE_API_KEY": "test-key"})
    @patch("google.generativeai.configure")
    @patch("google.generativeai.GenerativeModel")
    def test_open_without_priming(self, mock_model_class, mock_configure):
        GeminiGateway().open("Be brief.", ())
        mock_model_class.return_value.start_chat.assert_called_once_with(history=[])


class TestGeminiChatHandle:
    """Test streaming turns."""

    def setup_method(self):
        self.chat_session = MagicMock()
        self.chat_session.send_message_async = AsyncMock()
        self.handle = GeminiChatHandle(
            self.chat_session, model_name="gemini-2.5-flash", initial_backoff=0.0
        )

    @pytest.mark.asyncio
    async def test_streams_deltas_in_order(self):
        self.chat_session.send_message_async.return_value = FakeStream(
            [FakeChunk("Hi"), FakeChunk(), FakeChunk(" there!")]
        )

        assert await collect(self.handle, "Hello") == ["Hi", " there!"]

        args, kwargs = self.chat_session.send_message_async.call_args
        assert args == ("Hello",)
        assert kwargs["stream"] is True
        assert self.handle.get_status()["turns_sent"] == 1
        assert self.handle.is_streaming is False

    @pytest.mark.asyncio
    async def test_retries_opening_the_stream(self):
        self.chat_session.send_message_async.side_effect = [
            google_exceptions.ServiceUnavailable("overloaded"),
            FakeStream([FakeChunk("ok")]),
        ]

        assert await collect(self.handle, "Hello") == ["ok"]
        assert self.chat_session.send_message_async.call_count == 2

    @pytest.mark.asyncio
    async def test_all_retries_fail(self):
        self.chat_session.send_message_async.side_effect = google_exceptions.ServiceUnavailable(
            "overloaded"
        )

        with pytest.raises(TransportError, match="Error communicating with the AI"):
            await collect(self.handle, "Hello")
        assert self.chat_session.send_message_async.call_count == 3

    @pytest.mark.asyncio
    async def test_rejected_key_is_a_configuration_error(self):
        self.chat_session.send_message_async.side_effect = google_exceptions.PermissionDenied(
            "API key not valid"
        )

        with pytest.raises(ConfigurationError):
            await collect(self.handle, "Hello")
        assert self.chat_session.send_message_async.call_count == 1

    @pytest.mark.asyncio
    async def test_failure_mid_stream_is_not_retried(self):
        self.chat_session.send_message_async.return_value = FakeStream(
            [FakeChunk("Hi")], error=google_exceptions.InternalServerError("reset")
        )

        deltas = []
        with pytest.raises(TransportError):
            async for delta in self.handle.stream_turn("Hello"):
                deltas.append(delta)

        assert deltas == ["Hi"]
        assert self.chat_session.send_message_async.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        self.handle.timeout = -1.0
        self.chat_session.send_message_async.return_value = FakeStream([FakeChunk("Hi")])

        with pytest.raises(TransportError, match="timeout"):
            await collect(self.handle, "Hello")

    @pytest.mark.asyncio
    async def test_slow_first_response_times_out(self):
        async def never_answers(*args, **kwargs):
            await asyncio.sleep(1)

        self.handle.timeout = 0.01
        self.chat_session.send_message_async.side_effect = never_answers

        with pytest.raises(TransportError, match="timeout"):
            await collect(self.handle, "Hello")
        assert self.chat_session.send_message_async.call_count == 1
        assert self.handle.is_streaming is False

    @pytest.mark.asyncio
    async def test_broken_history_is_not_retried(self):
        self.chat_session.send_message_async.side_effect = genai.types.BrokenResponseError(
            "broken streaming response"
        )

        with pytest.raises(TransportError):
            await collect(self.handle, "Hello")
        assert self.chat_session.send_message_async.call_count == 1

    @pytest.mark.asyncio
    async def test_failed_turn_restores_history(self):
        committed = [{"role": "user", "parts": [{"text": "context"}]}]
        self.chat_session.history = committed
        self.chat_session.send_message_async.return_value = FakeStream(
            [FakeChunk("Hi")], error=google_exceptions.InternalServerError("reset")
        )

        with pytest.raises(TransportError):
            await collect(self.handle, "Hello")

        assert self.chat_session.history == committed
        assert self.chat_session.history is not committed

    @pytest.mark.asyncio
    async def test_closed_handle(self):
        self.handle.close()
        with pytest.raises(TransportError):
            await collect(self.handle, "Hello")
        assert self.handle.get_status()["open"] is False


def model_chunk(text, finish_reason=None):
    candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
    if finish_reason is not None:
        candidate["finish_reason"] = finish_reason
    return genai.protos.GenerateContentResponse(candidates=[candidate])


class TestGeminiChatRecovery:
    """Drive a real ChatSession through a dropped stream and a resubmission."""

    def setup_method(self):
        model = genai.GenerativeModel(model_name="gemini-2.5-flash")

        async def dropped_stream():
            yield model_chunk("partial")
            raise google_exceptions.ServiceUnavailable("connection reset")

        async def complete_stream():
            yield model_chunk("Recovered!", genai.protos.Candidate.FinishReason.STOP)

        model._async_client = MagicMock()
        model._async_client.stream_generate_content = AsyncMock(
            side_effect=[dropped_stream(), complete_stream()]
        )
        self.client = model._async_client
        self.chat_session = model.start_chat(history=[])
        self.handle = GeminiChatHandle(
            self.chat_session, model_name="gemini-2.5-flash", initial_backoff=0.0
        )

    @pytest.mark.asyncio
    async def test_resubmit_after_dropped_stream(self):
        deltas = []
        with pytest.raises(TransportError):
            async for delta in self.handle.stream_turn("Hello"):
                deltas.append(delta)
        assert deltas == ["partial"]
        assert self.chat_session.history == []

        assert await collect(self.handle, "Hello again") == ["Recovered!"]

        request = self.client.stream_generate_content.call_args.args[0]
        assert [c.parts[0].text for c in request.contents] == ["Hello again"]
        history = self.chat_session.history
        assert [c.role for c in history] == ["user", "model"]
        assert history[1].parts[0].text == "Recovered!"
        assert self.handle.get_status()["turns_sent"] == 1


class TestGeminiTranscriber:
    """Test audio chunk transcription."""

    @patch.dict(os.environ, {"GOOGLE_API_KEY": "test-key"})
    @patch("google.generativeai.configure")
    @patch("google.generativeai.GenerativeModel")
    @pytest.mark.asyncio
    async def test_transcribe(self, mock_model_class, mock_configure):
        mock_model = MagicMock()
        mock_model.generate_content_async = AsyncMock(return_value=MagicMock(text="  hello there \n"))
        mock_model_class.return_value = mock_model

        text = await GeminiTranscriber().transcribe(b"RIFF....", "audio/wav")

        assert text == "hello there"
        contents = mock_model.generate_content_async.call_args.args[0]
        assert contents[0] == TRANSCRIPTION_PROMPT
        assert contents[1] == {"mime_type": "audio/wav", "data": b"RIFF...."}

    @patch.dict(os.environ, {"GOOGLE_API_KEY": "test-key"})
    @patch("google.generativeai.configure")
    @patch("google.generativeai.GenerativeModel")
    @pytest.mark.asyncio
    async def test_transcribe_failure(self, mock_model_class, mock_configure):
        mock_model_class.return_value.generate_content_async = AsyncMock(
            side_effect=RuntimeError("quota")
        )

        with pytest.raises(TransportError, match="Failed to transcribe audio"):
            await GeminiTranscriber().transcribe(b"RIFF....")

    @patch.dict(os.environ, {}, clear=True)
    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            await GeminiTranscriber().transcribe(b"RIFF....")
