"""
Mock provider implementations for testing the voice assistant.
"""

import asyncio
import time
from typing import AsyncIterator, List, Optional, Sequence

import numpy as np

from voice_assistant.errors import (
    ConfigurationError,
    PermissionDeniedError,
    TransportError,
    VoiceAssistantError,
)
from voice_assistant.providers.ai.base import AIGateway, ChatHandle
from voice_assistant.providers.capture.base import (
    AudioFrame,
    MediaStream,
    MediaTrack,
    ScreenAudioCaptureService,
)
from voice_assistant.providers.speech.base import (
    RecognitionAlternative,
    RecognitionEvent,
    RecognitionResult,
    SpeechRecognitionService,
)
from voice_assistant.providers.transcription.base import Transcriber, WAV_MIME_TYPE
from voice_assistant.state.context import PrimingPart


MOCK_RESPONSES = [
    "I'm doing great, thank you for asking! How can I help you today?",
    "The weather is looking nice! It's a perfect day for a conversation.",
    "I'd be happy to help you with your task. What would you like to work on?",
    "Here's a joke for you: Why don't scientists trust atoms? Because they make up everything!",
]


def split_into_deltas(text: str) -> List[str]:
    """Split a response into word deltas that concatenate back to the text."""
    words = text.split(" ")
    return [word if i == 0 else " " + word for i, word in enumerate(words)]


class MockChatHandle(ChatHandle):
    """Chat handle that streams scripted deltas."""

    def __init__(
        self,
        scripts: List[List[str]],
        error: Optional[Exception] = None,
        fail_after: int = 0,
        delay: float = 0.0,
    ):
        self.scripts = scripts
        self.error = error
        self.fail_after = fail_after
        self.delay = delay
        self.sent: List[str] = []
        self.closed = False
        self.is_streaming = False

    async def stream_turn(self, text: str) -> AsyncIterator[str]:
        if self.closed:
            raise TransportError("Chat session is closed.")

        turn = len(self.sent)
        self.sent.append(text)
        self.is_streaming = True
        try:
            if self.error is not None and self.fail_after == 0:
                raise self.error

            deltas = self.scripts[turn % len(self.scripts)] if self.scripts else []
            for i, delta in enumerate(deltas):
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield delta
                if self.error is not None and i + 1 >= self.fail_after:
                    raise self.error
        finally:
            self.is_streaming = False

    def close(self) -> None:
        self.closed = True

    def get_status(self) -> dict:
        return {
            "provider": "mock",
            "turns_sent": len(self.sent),
            "closed": self.closed,
            "is_streaming": self.is_streaming,
        }


class MockGateway(AIGateway):
    """Gateway that opens MockChatHandles and records how it was primed."""

    def __init__(
        self,
        scripts: Optional[Sequence[Sequence[str]]] = None,
        stream_error: Optional[Exception] = None,
        fail_after: int = 0,
        open_error: Optional[VoiceAssistantError] = None,
        delay: float = 0.0,
    ):
        if scripts is None:
            scripts = [split_into_deltas(response) for response in MOCK_RESPONSES]
        self.scripts = [list(script) for script in scripts]
        self.stream_error = stream_error
        self.fail_after = fail_after
        self.open_error = open_error
        self.delay = delay
        self.opened: List[dict] = []
        self.handles: List[MockChatHandle] = []

    def open(self, system_instruction: str, priming_parts: Sequence[PrimingPart]) -> MockChatHandle:
        self.opened.append(
            {"system_instruction": system_instruction, "priming_parts": list(priming_parts)}
        )
        if self.open_error is not None:
            raise self.open_error

        handle = MockChatHandle(self.scripts, self.stream_error, self.fail_after, self.delay)
        self.handles.append(handle)
        return handle

    @property
    def last_handle(self) -> Optional[MockChatHandle]:
        return self.handles[-1] if self.handles else None

    def get_status(self) -> dict:
        return {"provider": "mock", "sessions_opened": len(self.handles)}


class MockMissingKeyGateway(MockGateway):
    """Gateway that behaves as if GOOGLE_API_KEY were unset."""

    def __init__(self):
        super().__init__(
            open_error=ConfigurationError(
                "API key is missing. It must be provided via the "
                "GOOGLE_API_KEY environment variable."
            )
        )


class MockRecognitionService(SpeechRecognitionService):
    """
    Recognition service driven by the test (or by a timed script).

    With ``auto_notify`` the start and end notifications are delivered
    synchronously from ``start()`` and ``stop()``.
    """

    def __init__(
        self,
        auto_notify: bool = True,
        start_error: Optional[Exception] = None,
        utterances: Optional[List[str]] = None,
        interval: float = 3.5,
    ):
        super().__init__()
        self.auto_notify = auto_notify
        self.start_error = start_error
        self.utterances = list(utterances or [])
        self.interval = interval
        self.is_running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.devices: List[str] = []
        self.results: List[RecognitionResult] = []
        self._timers: List[asyncio.TimerHandle] = []

    def start(self) -> None:
        self.start_calls += 1
        self.devices.append(self.device_id)
        if self.start_error is not None:
            raise self.start_error

        self.is_running = True
        self.results = []
        if self.auto_notify and self.listener:
            self.listener.handle_start()
        self._schedule_utterances()

    def stop(self) -> None:
        self.stop_calls += 1
        self._cancel_timers()
        was_running, self.is_running = self.is_running, False
        if self.auto_notify and was_running and self.listener:
            self.listener.handle_end()

    def _schedule_utterances(self) -> None:
        if not self.utterances:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        for i, text in enumerate(self.utterances):
            self._timers.append(loop.call_later(self.interval * (i + 1), self.say, text))

    def _cancel_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    # Driving helpers

    def notify_start(self) -> None:
        self.listener.handle_start()

    def interim(self, text: str) -> None:
        self._deliver(RecognitionResult([RecognitionAlternative(text)], is_final=False))

    def say(self, text: str) -> None:
        """Deliver a finalized utterance."""
        self._deliver(RecognitionResult([RecognitionAlternative(text, 0.95)], is_final=True))

    def _deliver(self, result: RecognitionResult) -> None:
        if self.results and not self.results[-1].is_final:
            self.results[-1] = result
        else:
            self.results.append(result)
        self.listener.handle_result(
            RecognitionEvent(result_index=len(self.results) - 1, results=list(self.results))
        )

    def fail(self, code: str) -> None:
        """Report a recognizer error followed by the end notification."""
        self.is_running = False
        self._cancel_timers()
        self.listener.handle_error(code)
        self.listener.handle_end()

    def end(self) -> None:
        """End without being asked to, like a recognizer timing out."""
        self.is_running = False
        self._cancel_timers()
        self.listener.handle_end()

    def get_status(self) -> dict:
        return {
            "provider": "mock_speech",
            "device": self.device_id,
            "is_running": self.is_running,
            "start_calls": self.start_calls,
            "stop_calls": self.stop_calls,
        }


class MockMediaTrack(MediaTrack):
    """Track that records whether it was released."""

    def __init__(self, kind: str, label: str = ""):
        super().__init__(kind, label or f"mock-{kind}")
        self.released = False

    def end(self) -> None:
        """Simulate the user revoking the share."""
        self._fire_ended()

    def _release(self) -> None:
        self.released = True


class MockMediaStream(MediaStream):
    """Stream whose audio is pushed by the test."""

    def push_audio(self, samples: np.ndarray, sample_rate: int = 16000) -> None:
        self.deliver(AudioFrame(np.asarray(samples, dtype=np.float32), sample_rate))


class MockCaptureService(ScreenAudioCaptureService):
    """Capture service that hands out mock streams."""

    def __init__(self, share_audio: bool = True, deny: bool = False,
                 error: Optional[Exception] = None):
        self.share_audio = share_audio
        self.deny = deny
        self.error = error
        self.requests: List[dict] = []
        self.streams: List[MockMediaStream] = []

    async def request_capture(self, video: bool = True, audio: bool = True) -> MockMediaStream:
        self.requests.append({"video": video, "audio": audio})
        if self.deny:
            raise PermissionDeniedError("Permission to capture the tab was denied.")
        if self.error is not None:
            raise self.error

        tracks = []
        if video:
            tracks.append(MockMediaTrack("video"))
        if audio and self.share_audio:
            tracks.append(MockMediaTrack("audio"))
        stream = MockMediaStream(tracks)
        self.streams.append(stream)
        return stream

    @property
    def last_stream(self) -> Optional[MockMediaStream]:
        return self.streams[-1] if self.streams else None

    def get_status(self) -> dict:
        return {"provider": "mock_capture", "requests": len(self.requests)}


class MockTranscriber(Transcriber):
    """Transcriber returning canned text."""

    def __init__(self, transcripts: Optional[List[str]] = None,
                 error: Optional[Exception] = None):
        self.transcripts = list(transcripts or ["This is mock tab audio."])
        self.error = error
        self.calls: List[dict] = []

    async def transcribe(self, audio: bytes, mime_type: str = WAV_MIME_TYPE) -> str:
        self.calls.append({"size": len(audio), "mime_type": mime_type, "at": time.time()})
        if self.error is not None:
            raise self.error
        return self.transcripts[(len(self.calls) - 1) % len(self.transcripts)]
