"""Gemini AI gateway implementation."""

import asyncio
import base64
import os
import time
from typing import AsyncIterator, List, Optional, Sequence

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
import structlog

from .base import AIGateway, ChatHandle
from ...errors import ConfigurationError, TransportError
from ...state.context import InlineDataPart, PrimingPart, PRIMING_ACKNOWLEDGEMENT


logger = structlog.get_logger()


AUTH_ERRORS = (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)
HISTORY_ERRORS = (genai.types.BrokenResponseError, genai.types.IncompleteIterationError)


def _is_credential_error(error: Exception) -> bool:
    if isinstance(error, AUTH_ERRORS):
        return True
    return isinstance(error, google_exceptions.InvalidArgument) and "API key" in str(error)


def build_history(priming_parts: Sequence[PrimingPart]) -> List[dict]:
    """Translate priming parts into a user/model exchange for the chat history."""
    if not priming_parts:
        return []

    user_parts = []
    for part in priming_parts:
        if isinstance(part, InlineDataPart):
            user_parts.append(
                {
                    "inline_data": {
                        "mime_type": part.mime_type,
                        "data": base64.b64decode(part.data),
                    }
                }
            )
        else:
            user_parts.append({"text": part.text})

    return [
        {"role": "user", "parts": user_parts},
        {"role": "model", "parts": [{"text": PRIMING_ACKNOWLEDGEMENT}]},
    ]


class GeminiChatHandle(ChatHandle):
    """Streaming chat session backed by ``genai.ChatSession``."""

    def __init__(
        self,
        chat_session,
        model_name: str,
        temperature: float = 0.7,
        max_output_tokens: int = 2048,
        timeout: float = 30.0,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
    ):
        self.chat_session = chat_session
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.is_streaming = False
        self.turns_sent = 0

    async def _send(self, text: str):
        """Open the stream, retrying only while no delta has been produced."""
        generation_config = genai.GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

        for attempt in range(self.max_retries):
            try:
                return await self.chat_session.send_message_async(
                    text, stream=True, generation_config=generation_config
                )
            except Exception as e:
                if _is_credential_error(e):
                    logger.error("Gemini rejected credentials", error=str(e))
                    raise ConfigurationError(
                        "The AI service rejected the API key. Check GOOGLE_API_KEY."
                    ) from e
                if isinstance(e, HISTORY_ERRORS):
                    # Resending cannot succeed until the chat history is repaired.
                    logger.error("Gemini chat history is inconsistent", error=str(e))
                    raise TransportError(
                        "Error communicating with the AI. Please try again."
                    ) from e

                logger.warning(f"Gemini attempt {attempt + 1} failed", error=str(e))
                if attempt == self.max_retries - 1:
                    logger.error("All Gemini retry attempts failed", error=str(e))
                    raise TransportError(
                        "Error communicating with the AI. Please try again."
                    ) from e

                wait_time = self.initial_backoff * 2**attempt
                logger.info(f"Retrying Gemini in {wait_time}s", attempt=attempt + 1)
                await asyncio.sleep(wait_time)

    async def stream_turn(self, text: str) -> AsyncIterator[str]:
        if self.chat_session is None:
            raise TransportError("Chat session is closed.")

        committed = list(self.chat_session.history)
        completed = False
        self.is_streaming = True
        start_time = time.monotonic()
        try:
            try:
                response = await asyncio.wait_for(self._send(text), self.timeout)
            except asyncio.TimeoutError:
                logger.error("Gemini first response timeout", timeout=self.timeout)
                raise TransportError(f"AI response timeout after {self.timeout}s")

            async for chunk in response:
                if time.monotonic() - start_time > self.timeout:
                    logger.error("Gemini response timeout", timeout=self.timeout)
                    raise TransportError(
                        f"AI response timeout after {self.timeout}s"
                    )

                try:
                    delta = chunk.text
                except ValueError:
                    # Chunks without text parts (e.g. a bare finish reason).
                    continue
                if delta:
                    yield delta

            completed = True
            self.turns_sent += 1
        except (TransportError, ConfigurationError):
            raise
        except Exception as e:
            logger.error("Gemini stream failed", error=str(e))
            if _is_credential_error(e):
                raise ConfigurationError(
                    "The AI service rejected the API key. Check GOOGLE_API_KEY."
                ) from e
            raise TransportError(
                "Error communicating with the AI. Please try again."
            ) from e
        finally:
            self.is_streaming = False
            if not completed and self.chat_session is not None:
                # Drop the unfinished exchange so the next send starts clean.
                self.chat_session.history = committed

    def close(self) -> None:
        logger.debug("Closing Gemini chat session", turns=self.turns_sent)
        self.chat_session = None

    def get_status(self) -> dict:
        return {
            "model": self.model_name,
            "is_streaming": self.is_streaming,
            "open": self.chat_session is not None,
            "turns_sent": self.turns_sent,
        }


class GeminiGateway(AIGateway):
    """
    Gemini gateway using the google-generativeai SDK.
    """

    def __init__(
        self,
        model_name: str = "gemini-2.5-flash",
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 2048,
        timeout: float = 30.0,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
    ):
        self.model_name = model_name
        self.api_key = api_key
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.sessions_opened = 0

    def open(
        self, system_instruction: str, priming_parts: Sequence[PrimingPart]
    ) -> GeminiChatHandle:
        api_key = self.api_key or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            message = (
                "API key is missing. It must be provided via the "
                "GOOGLE_API_KEY environment variable."
            )
            logger.error(message)
            raise ConfigurationError(message)

        logger.info("Creating new Gemini chat session", model=self.model_name)
        history = build_history(priming_parts)

        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(
            model_name=self.model_name, system_instruction=system_instruction
        )
        chat_session = model.start_chat(history=history)
        self.sessions_opened += 1

        logger.info("Gemini chat session created", history_length=len(history))
        return GeminiChatHandle(
            chat_session,
            model_name=self.model_name,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            timeout=self.timeout,
            max_retries=self.max_retries,
            initial_backoff=self.initial_backoff,
        )

    def get_status(self) -> dict:
        return {
            "provider": "gemini",
            "model": self.model_name,
            "sessions_opened": self.sessions_opened,
            "api_key_configured": bool(self.api_key or os.getenv("GOOGLE_API_KEY")),
        }
