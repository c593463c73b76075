"""Continuous dictation built from sounddevice input, VAD and chunk transcription."""

import asyncio
from typing import List, Optional, Set, Union

import numpy as np
import sounddevice as sd
import structlog

from .base import (
    DEFAULT_DEVICE,
    RecognitionAlternative,
    RecognitionEvent,
    RecognitionResult,
    SpeechRecognitionService,
)
from ..transcription.base import Transcriber, WAV_MIME_TYPE, encode_wav
from ...utils.voice_activity import VoiceActivityDetector, VoiceEvent


logger = structlog.get_logger()


def resolve_device(device_id: str) -> Union[int, str, None]:
    """Map a device id string onto what sounddevice expects."""
    if device_id == DEFAULT_DEVICE:
        return None
    if device_id.isdigit():
        return int(device_id)
    return device_id


class VadDictationService(SpeechRecognitionService):
    """
    Dictation service for an audio input device.

    Audio arrives on the PortAudio thread and is handed to the event loop
    block by block. Utterances are cut at voice-activity boundaries and each
    one is transcribed and reported as a final result. Interim results are
    not produced.

    ``stop()`` is graceful: speech buffered at the time of the call is still
    transcribed, and the end notification follows the last result. Errors
    abort without waiting.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        sample_rate: int = 16000,
        frame_duration_ms: int = 30,
        silence_duration_ms: int = 700,
        max_utterance_seconds: float = 15.0,
        vad_aggressiveness: int = 2,
    ):
        super().__init__()
        self.transcriber = transcriber
        self.sample_rate = sample_rate
        self.max_utterance_samples = int(sample_rate * max_utterance_seconds)
        self.vad = VoiceActivityDetector(
            sample_rate=sample_rate,
            frame_duration_ms=frame_duration_ms,
            vad_aggressiveness=vad_aggressiveness,
            silence_duration_ms=silence_duration_ms,
        )

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.stream: Optional[sd.InputStream] = None
        self.is_running = False
        self._ended = True
        self._pending = np.zeros(0, dtype=np.float32)
        self._utterance: List[np.ndarray] = []
        self._tasks: Set[asyncio.Task] = set()
        self._drain: Optional[asyncio.Task] = None
        self.utterances_transcribed = 0

    @property
    def is_draining(self) -> bool:
        return self._drain is not None and not self._drain.done()

    def start(self) -> None:
        if self.is_running:
            logger.debug("Dictation already running")
            return

        if self.is_draining:
            # Transcriptions from the previous run still report their results.
            self._drain.cancel()
        self._drain = None
        self.loop = asyncio.get_running_loop()
        self._utterance = []
        self._pending = np.zeros(0, dtype=np.float32)
        self.vad.reset()

        device = resolve_device(self.device_id)
        logger.info("Starting dictation", device=self.device_id, sample_rate=self.sample_rate)
        try:
            self.stream = sd.InputStream(
                device=device,
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.vad.frame_size,
                callback=self._audio_callback,
                finished_callback=self._finished_callback,
            )
            self.stream.start()
        except (sd.PortAudioError, ValueError) as e:
            logger.error("Failed to open audio input", device=self.device_id, error=str(e))
            self.stream = None
            self.loop.call_soon(self._notify_error, "audio-capture")
            return

        self.is_running = True
        self._ended = False
        self.loop.call_soon(self._notify_start)

    def stop(self) -> None:
        logger.info("Stopping dictation")
        was_running = self.is_running
        self.is_running = False
        self._close_stream()
        if self.loop is None:
            return

        if was_running:
            self._flush_utterance()
        if self._tasks and self._drain is None:
            logger.info("Waiting for pending transcriptions", pending=len(self._tasks))
            self._drain = asyncio.ensure_future(self._end_after(set(self._tasks)))
        elif not self.is_draining:
            self.loop.call_soon(self._notify_end)

    def _abort(self) -> None:
        logger.info("Aborting dictation")
        self.is_running = False
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        if self.is_draining:
            self._drain.cancel()
        self._close_stream()
        if self.loop is not None:
            self.loop.call_soon(self._notify_end)

    async def _end_after(self, tasks: Set[asyncio.Task]) -> None:
        await asyncio.wait(tasks)
        self._notify_end()

    def _close_stream(self) -> None:
        stream, self.stream = self.stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error closing audio stream", error=str(e))

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """PortAudio thread: forward a copy of the block to the event loop."""
        if status:
            logger.warning("Audio callback status", status=str(status))
        if self.loop is not None:
            self.loop.call_soon_threadsafe(self._process_block, indata[:, 0].copy())

    def _finished_callback(self) -> None:
        """PortAudio thread: the stream ended, possibly on its own."""
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._handle_stream_finished)

    def _handle_stream_finished(self) -> None:
        if self.is_running:
            logger.warning("Audio input ended unexpectedly")
            self.is_running = False
            self._close_stream()
        if not self.is_draining:
            self._notify_end()

    def _process_block(self, block: np.ndarray) -> None:
        if not self.is_running:
            return

        self._pending = np.concatenate([self._pending, block])
        frame_size = self.vad.frame_size
        while len(self._pending) >= frame_size:
            frame, self._pending = self._pending[:frame_size], self._pending[frame_size:]
            event = self.vad.process_frame(frame)

            if self.vad.is_voice_active or event == VoiceEvent.SPEECH_END:
                self._utterance.append(frame)

            buffered = sum(len(f) for f in self._utterance)
            if event == VoiceEvent.SPEECH_END or buffered >= self.max_utterance_samples:
                self._flush_utterance()

    def _flush_utterance(self) -> None:
        if not self._utterance:
            return
        samples = np.concatenate(self._utterance)
        self._utterance = []
        task = asyncio.ensure_future(self._transcribe(samples))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _transcribe(self, samples: np.ndarray) -> None:
        audio = encode_wav(samples, self.sample_rate)
        try:
            text = await self.transcriber.transcribe(audio, WAV_MIME_TYPE)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Utterance transcription failed", error=str(e))
            self._notify_error("network")
            if self.is_running or self.is_draining:
                self._abort()
            return

        if not (self.is_running or self.is_draining) or not text:
            return

        self.utterances_transcribed += 1
        result = RecognitionResult([RecognitionAlternative(text)], is_final=True)
        if self.listener:
            self.listener.handle_result(RecognitionEvent(result_index=0, results=[result]))

    def _notify_start(self) -> None:
        if self.listener:
            self.listener.handle_start()

    def _notify_error(self, code: str) -> None:
        if self.listener:
            self.listener.handle_error(code)

    def _notify_end(self) -> None:
        if self._ended:
            return
        self._ended = True
        if self.listener:
            self.listener.handle_end()

    def get_status(self) -> dict:
        return {
            "provider": "vad_dictation",
            "device": self.device_id,
            "is_running": self.is_running,
            "stream_active": self.stream is not None and self.stream.active,
            "utterances_transcribed": self.utterances_transcribed,
            "pending_transcriptions": len(self._tasks),
            "draining": self.is_draining,
            "vad_stats": self.vad.get_stats(),
        }
