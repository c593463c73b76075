"""Voice activity detection used to segment dictated utterances."""

import collections
from enum import Enum
from typing import Deque, Optional

import numpy as np
import webrtcvad
import structlog


logger = structlog.get_logger()


class VoiceEvent(str, Enum):
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


class VoiceActivityDetector:
    """
    Frame-by-frame speech detection combining webrtcvad with a dynamic
    energy threshold.

    Silence is measured in frames rather than wall-clock time so that
    processing is deterministic for a given input.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        frame_duration_ms: int = 30,
        vad_aggressiveness: int = 2,
        voice_threshold: float = 0.6,
        silence_duration_ms: int = 700,
    ):
        if frame_duration_ms not in (10, 20, 30):
            raise ValueError("webrtcvad frames must be 10, 20 or 30 ms long")

        self.sample_rate = sample_rate
        self.frame_duration_ms = frame_duration_ms
        self.frame_size = int(sample_rate * frame_duration_ms / 1000)
        self.voice_threshold = voice_threshold
        self.silence_frames_needed = max(1, silence_duration_ms // frame_duration_ms)

        self.vad = webrtcvad.Vad(vad_aggressiveness)

        self.voice_frames: Deque[bool] = collections.deque(maxlen=10)
        self.audio_levels: Deque[float] = collections.deque(maxlen=50)
        self.is_voice_active = False
        self.silent_frames = 0
        self.noise_floor = 0.0
        self.dynamic_threshold = 0.0
        self._frames_seen = 0

    def reset(self) -> None:
        self.voice_frames.clear()
        self.is_voice_active = False
        self.silent_frames = 0

    def process_frame(self, frame: np.ndarray) -> Optional[VoiceEvent]:
        """
        Process one frame of float32 samples.

        Returns SPEECH_START on the transition into speech, SPEECH_END once
        enough consecutive silent frames follow speech, otherwise None.
        """
        if len(frame) != self.frame_size:
            if len(frame) < self.frame_size:
                frame = np.pad(frame, (0, self.frame_size - len(frame)))
            else:
                frame = frame[: self.frame_size]

        level = float(np.sqrt(np.mean(frame.astype(np.float32) ** 2)))
        self.audio_levels.append(level)

        self._frames_seen += 1
        if self._frames_seen % 20 == 0:
            self._update_dynamic_threshold()

        audio_bytes = (np.clip(frame, -1.0, 1.0) * 32767).astype(np.int16).tobytes()
        is_speech = self.vad.is_speech(audio_bytes, self.sample_rate)
        self.voice_frames.append(is_speech and level > self.dynamic_threshold)

        voice_ratio = sum(self.voice_frames) / len(self.voice_frames)

        if not self.is_voice_active:
            if len(self.voice_frames) == self.voice_frames.maxlen and voice_ratio >= self.voice_threshold:
                self.is_voice_active = True
                self.silent_frames = 0
                logger.debug("Voice activity started", voice_ratio=voice_ratio, audio_level=level)
                return VoiceEvent.SPEECH_START
            return None

        if self.voice_frames[-1]:
            self.silent_frames = 0
            return None

        self.silent_frames += 1
        if self.silent_frames >= self.silence_frames_needed:
            self.is_voice_active = False
            self.silent_frames = 0
            self.voice_frames.clear()
            logger.debug("Voice activity ended")
            return VoiceEvent.SPEECH_END
        return None

    def _update_dynamic_threshold(self) -> None:
        """Update dynamic threshold based on recent audio levels."""
        if len(self.audio_levels) < 10:
            return

        recent_levels = sorted(self.audio_levels)
        # Bottom 25%
        self.noise_floor = float(np.mean(recent_levels[: len(recent_levels) // 4]))
        self.dynamic_threshold = max(self.noise_floor * 3.0, 0.01)

    def get_stats(self) -> dict:
        return {
            "is_voice_active": self.is_voice_active,
            "silent_frames": self.silent_frames,
            "noise_floor": self.noise_floor,
            "dynamic_threshold": self.dynamic_threshold,
        }
