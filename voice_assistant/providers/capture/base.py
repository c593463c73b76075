"""Base interface for display/tab audio capture services."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np
import structlog


logger = structlog.get_logger()


@dataclass
class AudioFrame:
    """A block of mono float32 samples from a captured audio track."""
    samples: np.ndarray
    sample_rate: int


AudioSink = Callable[[AudioFrame], None]


class MediaTrack(ABC):
    """One track of a captured stream."""

    def __init__(self, kind: str, label: str = ""):
        self.kind = kind
        self.label = label
        self.ended = False
        self._ended_listeners: List[Callable[[], None]] = []

    def add_ended_listener(self, listener: Callable[[], None]) -> None:
        self._ended_listeners.append(listener)

    def remove_ended_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._ended_listeners:
            self._ended_listeners.remove(listener)

    def stop(self) -> None:
        """Stop the track. Explicit stops do not fire ended listeners."""
        if self.ended:
            return
        self.ended = True
        self._release()

    def _fire_ended(self) -> None:
        """Report that the platform ended the track (user revoked sharing)."""
        if self.ended:
            return
        self.ended = True
        self._release()
        for listener in list(self._ended_listeners):
            try:
                listener()
            except Exception as e:
                logger.error("Track ended listener error", track=self.label, error=str(e))

    @abstractmethod
    def _release(self) -> None:
        """Free the underlying resource."""
        pass


class MediaStream:
    """A captured stream: zero or more audio tracks plus other tracks."""

    def __init__(self, tracks: List[MediaTrack]):
        self.tracks = list(tracks)
        self.sink: Optional[AudioSink] = None

    def get_tracks(self) -> List[MediaTrack]:
        return list(self.tracks)

    def get_audio_tracks(self) -> List[MediaTrack]:
        return [track for track in self.tracks if track.kind == "audio"]

    def attach_sink(self, sink: AudioSink) -> None:
        """Route audio frames to a consumer so the stream keeps flowing."""
        self.sink = sink

    def detach_sink(self) -> None:
        self.sink = None

    def deliver(self, frame: AudioFrame) -> None:
        if self.sink is not None:
            self.sink(frame)


class ScreenAudioCaptureService(ABC):
    """Platform service that captures another tab's or display's audio."""

    @abstractmethod
    async def request_capture(self, video: bool = True, audio: bool = True) -> MediaStream:
        """
        Ask the user to share a tab or display.

        Raises:
            PermissionDeniedError: If the user denies or dismisses the prompt
            CaptureError: If the platform cannot open the capture
        """
        pass

    @abstractmethod
    def get_status(self) -> dict:
        pass
