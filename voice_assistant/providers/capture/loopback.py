"""Tab audio capture through a loopback/virtual input device."""

import asyncio
from typing import Optional

import sounddevice as sd
import structlog

from .base import AudioFrame, MediaStream, MediaTrack, ScreenAudioCaptureService
from ..speech.vad_dictation import resolve_device
from ...errors import CaptureError, PermissionDeniedError


logger = structlog.get_logger()


class LoopbackAudioTrack(MediaTrack):
    """Audio track fed by a sounddevice input stream."""

    def __init__(self, device, label: str, sample_rate: int, loop: asyncio.AbstractEventLoop):
        super().__init__("audio", label)
        self.device = device
        self.sample_rate = sample_rate
        self.loop = loop
        self.media_stream: Optional[MediaStream] = None
        self.input_stream: Optional[sd.InputStream] = None

    def open(self) -> None:
        self.input_stream = sd.InputStream(
            device=self.device,
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            callback=self._audio_callback,
            finished_callback=self._finished_callback,
        )
        self.input_stream.start()

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning("Loopback callback status", status=str(status))
        frame = AudioFrame(indata[:, 0].copy(), self.sample_rate)
        self.loop.call_soon_threadsafe(self._deliver, frame)

    def _deliver(self, frame: AudioFrame) -> None:
        if not self.ended and self.media_stream is not None:
            self.media_stream.deliver(frame)

    def _finished_callback(self) -> None:
        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._fire_ended)

    def _release(self) -> None:
        stream, self.input_stream = self.input_stream, None
        if stream is None:
            return
        try:
            stream.abort()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error closing loopback stream", error=str(e))


class LoopbackCaptureService(ScreenAudioCaptureService):
    """
    Captures audio another application plays by reading a loopback device
    (for example BlackHole, VB-Cable or a PulseAudio monitor source).

    Choosing the device stands in for the platform's share prompt: with no
    device configured the request counts as dismissed.
    """

    def __init__(self, device_id: Optional[str] = None, sample_rate: int = 16000):
        self.device_id = device_id
        self.sample_rate = sample_rate
        self.captures = 0

    async def request_capture(self, video: bool = True, audio: bool = True) -> MediaStream:
        if not self.device_id:
            raise PermissionDeniedError(
                "No loopback device selected. Set LOOPBACK_DEVICE to share tab audio."
            )

        device = resolve_device(self.device_id)
        try:
            info = sd.query_devices(device) if device is not None else sd.query_devices(kind="input")
        except (sd.PortAudioError, ValueError) as e:
            raise CaptureError(f"Loopback device '{self.device_id}' is not available.") from e

        logger.info("Loopback device selected", device=info["name"], inputs=info["max_input_channels"])

        tracks = []
        if audio and info["max_input_channels"] > 0:
            track = LoopbackAudioTrack(
                device, info["name"], self.sample_rate, asyncio.get_running_loop()
            )
            try:
                track.open()
            except (sd.PortAudioError, ValueError) as e:
                raise CaptureError(f"Failed to open loopback device: {e}") from e
            tracks.append(track)

        stream = MediaStream(tracks)
        for track in tracks:
            track.media_stream = stream
        self.captures += 1
        return stream

    def get_status(self) -> dict:
        return {
            "provider": "loopback",
            "device": self.device_id,
            "sample_rate": self.sample_rate,
            "captures": self.captures,
        }
