"""Base interface for audio chunk transcription."""

import io
from abc import ABC, abstractmethod

import numpy as np
import soundfile as sf


WAV_MIME_TYPE = "audio/wav"


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float32 mono samples as a 16-bit PCM WAV file."""
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


class Transcriber(ABC):
    """Turns a recorded audio chunk into text."""

    @abstractmethod
    async def transcribe(self, audio: bytes, mime_type: str = WAV_MIME_TYPE) -> str:
        """
        Transcribe an audio chunk.

        Returns:
            The transcribed text, stripped; empty when nothing was said

        Raises:
            TransportError: If the transcription call fails
        """
        pass
