"""Gemini audio transcription."""

import os
from typing import Optional

import google.generativeai as genai
import structlog

from .base import Transcriber, WAV_MIME_TYPE
from ...errors import ConfigurationError, TransportError


logger = structlog.get_logger()


TRANSCRIPTION_PROMPT = (
    "Transcribe the following audio recording verbatim. "
    "Output only the transcribed text and nothing else."
)


class GeminiTranscriber(Transcriber):
    """Transcribes audio chunks with a one-shot Gemini request."""

    def __init__(self, model_name: str = "gemini-2.5-flash", api_key: Optional[str] = None):
        self.model_name = model_name
        self.api_key = api_key
        self.model: Optional[genai.GenerativeModel] = None

    def _get_model(self) -> genai.GenerativeModel:
        if self.model is None:
            api_key = self.api_key or os.getenv("GOOGLE_API_KEY")
            if not api_key:
                raise ConfigurationError("API key is missing.")
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(model_name=self.model_name)
        return self.model

    async def transcribe(self, audio: bytes, mime_type: str = WAV_MIME_TYPE) -> str:
        model = self._get_model()
        logger.info("Sending audio to Gemini for transcription", mime_type=mime_type, size=len(audio))
        try:
            response = await model.generate_content_async(
                [TRANSCRIPTION_PROMPT, {"mime_type": mime_type, "data": audio}]
            )
            text = response.text.strip()
        except Exception as e:
            logger.error("Error during Gemini transcription", error=str(e))
            raise TransportError("Failed to transcribe audio.") from e

        logger.info("Transcription received from Gemini", characters=len(text))
        return text
