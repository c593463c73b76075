"""Tab audio capture controller."""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Set

import numpy as np
import structlog

from ..errors import CaptureError, VoiceAssistantError
from ..providers.capture.base import AudioFrame, MediaStream, ScreenAudioCaptureService
from ..providers.transcription.base import Transcriber, WAV_MIME_TYPE, encode_wav
from ..utils.events import EventChannel


logger = structlog.get_logger()

AUDIO_NOT_SHARED = "Audio not shared. You must check 'Share tab audio' to capture sound."


@dataclass
class CaptureState:
    active: bool = False
    stream_handle: Optional[MediaStream] = None


class TabAudioCaptureController:
    """
    Owns the lifecycle of one captured tab audio stream.

    The stream is kept flowing by a sink that drains every frame. With a
    transcriber configured the sink also buffers frames into chunks of
    ``chunk_seconds`` and publishes each non-blank transcript on ``on_final``.
    """

    def __init__(
        self,
        service: ScreenAudioCaptureService,
        transcriber: Optional[Transcriber] = None,
        chunk_seconds: float = 5.0,
    ):
        self.service = service
        self.transcriber = transcriber
        self.chunk_seconds = chunk_seconds
        self.capture = CaptureState()

        self._buffer: List[np.ndarray] = []
        self._buffered_samples = 0
        self._sample_rate: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()
        self.frames_received = 0
        self.chunks_transcribed = 0

        self.on_active_changed: EventChannel[bool] = EventChannel("capture_active_changed")
        self.on_final: EventChannel[str] = EventChannel("tab_final")
        self.on_error: EventChannel[VoiceAssistantError] = EventChannel("capture_error")

    @property
    def active(self) -> bool:
        return self.capture.active

    async def start(self) -> None:
        """
        Request a tab capture and keep its audio flowing.

        Raises:
            CaptureError: If the capture was denied, failed, or carries no audio
        """
        if self.capture.active:
            logger.debug("Tab capture already active")
            return

        logger.info("Requesting tab audio capture")
        try:
            stream = await self.service.request_capture(video=True, audio=True)
        except CaptureError as e:
            logger.error("Error starting tab capture", error=str(e))
            raise

        audio_tracks = stream.get_audio_tracks()
        if not audio_tracks:
            logger.warning("Capture carries no audio track")
            for track in stream.get_tracks():
                track.stop()
            raise CaptureError(AUDIO_NOT_SHARED)

        for track in stream.get_tracks():
            track.add_ended_listener(self._on_track_ended)

        self._reset_buffer()
        stream.attach_sink(self._sink)
        self.capture = CaptureState(active=True, stream_handle=stream)
        logger.info("Tab audio captured", audio_tracks=len(audio_tracks))
        self.on_active_changed.emit(True)

    def stop(self) -> None:
        """Release the capture. Safe to call when nothing is captured."""
        stream = self.capture.stream_handle
        was_active = self.capture.active
        self.capture = CaptureState()

        if stream is not None:
            for track in stream.get_tracks():
                track.remove_ended_listener(self._on_track_ended)
                track.stop()
            stream.detach_sink()

        self._reset_buffer()
        if was_active:
            logger.info("Tab audio capture stopped")
            self.on_active_changed.emit(False)

    def _on_track_ended(self) -> None:
        logger.info("Captured track ended by the platform")
        self.stop()

    def _sink(self, frame: AudioFrame) -> None:
        self.frames_received += 1
        if self.transcriber is None:
            return

        self._sample_rate = frame.sample_rate
        self._buffer.append(frame.samples)
        self._buffered_samples += len(frame.samples)
        if self._buffered_samples >= int(frame.sample_rate * self.chunk_seconds):
            self._flush_chunk()

    def _flush_chunk(self) -> None:
        if not self._buffer or self._sample_rate is None:
            return
        samples = np.concatenate(self._buffer)
        sample_rate = self._sample_rate
        self._reset_buffer()

        task = asyncio.ensure_future(self._transcribe(samples, sample_rate))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _transcribe(self, samples: np.ndarray, sample_rate: int) -> None:
        audio = encode_wav(samples, sample_rate)
        try:
            text = await self.transcriber.transcribe(audio, WAV_MIME_TYPE)
        except VoiceAssistantError as e:
            logger.error("Tab audio transcription failed", error=str(e))
            self.on_error.emit(e)
            return

        self.chunks_transcribed += 1
        text = text.strip()
        if text and self.capture.active:
            logger.info("Tab transcript received", transcript=text)
            self.on_final.emit(text)

    async def wait_for_transcriptions(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _reset_buffer(self) -> None:
        self._buffer = []
        self._buffered_samples = 0

    def get_status(self) -> dict:
        return {
            "active": self.capture.active,
            "transcribing": self.transcriber is not None,
            "chunk_seconds": self.chunk_seconds,
            "frames_received": self.frames_received,
            "chunks_transcribed": self.chunks_transcribed,
            "pending_transcriptions": len(self._tasks),
            "service": self.service.get_status(),
        }
