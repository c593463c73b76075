"""
Conversation session: the orchestrator that owns the message log and the chat.

Three independent sources feed into one ordered conversation: finalized
utterances from the speech input controller, transcripts from tab audio
capture, and typed text. Every one of them goes through ``send_turn``. The
session streams the model's reply into an assistant message, keeps the
metrics recorder current and turns every failure into ``current_error``.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set
import structlog

from .speech_input import SpeechInputController
from .tab_audio import TabAudioCaptureController
from ..errors import (
    CaptureError,
    ConfigurationError,
    TransportError,
    ValidationError,
    VoiceAssistantError,
)
from ..metrics.recorder import Metrics, MetricsRecorder
from ..providers.ai.base import AIGateway, ChatHandle
from ..providers.capability import Capability
from ..providers.capture.base import ScreenAudioCaptureService
from ..providers.speech.base import DEFAULT_DEVICE, SpeechRecognitionService
from ..providers.transcription.base import Transcriber
from ..state.attachments import Attachment
from ..state.context import (
    PrimingPart,
    SessionContext,
    build_session_context,
    coerce_parts,
)
from ..state.conversation import ConversationState, Message, MessageStatus
from ..utils.events import EventChannel


logger = structlog.get_logger()


DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a helpful and concise real-time AI assistant. Your responses "
    "should be fast and to the point. The user is speaking to you, so your "
    "responses should be natural in a conversation."
)

STATUS_LISTENING = "Listening..."
STATUS_RESTARTING = "Restarting listener..."
STATUS_TAB_CAPTURED = "Tab audio captured. Press the mic button to start transcribing."

TURN_IN_FLIGHT = "A response is still streaming. Wait for it to finish before sending another message."
SELECT_VIRTUAL_DEVICE = "Select a virtual audio device in Settings to transcribe from a tab."
TRANSPORT_FAILURE = "Error communicating with the AI. Please try again."


@dataclass
class ChatSessionState:
    """The one open chat handle and the context it was opened with."""
    handle: Optional[ChatHandle] = None
    context: Optional[SessionContext] = None

    @property
    def is_open(self) -> bool:
        return self.handle is not None


@dataclass
class SessionConfig:
    """Provider selection for a session built by ``create_session``."""
    ai_gateway: str = "gemini"
    speech_service: str = "vad_dictation"
    capture_service: str = "loopback"
    transcriber: str = "gemini"
    input_device: str = DEFAULT_DEVICE
    system_instruction: Optional[str] = None
    personalization: str = ""
    attachments: List[Attachment] = field(default_factory=list)
    transcribe_tab_audio: bool = True
    mock_mode: bool = False


class ConversationSession:
    """Orchestrates speech input, tab capture and the streaming chat."""

    def __init__(
        self,
        gateway: AIGateway,
        speech_service: Optional[Capability[SpeechRecognitionService]] = None,
        capture_service: Optional[Capability[ScreenAudioCaptureService]] = None,
        tab_transcriber: Optional[Transcriber] = None,
        recorder: Optional[MetricsRecorder] = None,
        system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION,
        personalization: str = "",
        attachments: Optional[Iterable[Attachment]] = None,
        priming_parts: Optional[Sequence[PrimingPart]] = None,
        input_device: str = DEFAULT_DEVICE,
        tab_chunk_seconds: float = 5.0,
    ):
        self.gateway = gateway
        self.recorder = recorder or MetricsRecorder()
        self.conversation = ConversationState()
        self.chat = ChatSessionState()

        self.system_instruction = system_instruction
        self.personalization = personalization
        self.attachments: List[Attachment] = list(attachments or [])
        self._explicit_parts = coerce_parts(priming_parts) if priming_parts else None

        self.current_error: Optional[VoiceAssistantError] = None
        self.status = ""
        self._turn_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

        self.on_error: EventChannel[Optional[VoiceAssistantError]] = EventChannel("session_error")
        self.on_message: EventChannel[Message] = EventChannel("message")
        self.on_status: EventChannel[str] = EventChannel("status")

        speech_service = speech_service or Capability.unsupported("No speech service configured")
        self.speech_unsupported_reason = speech_service.reason
        self.speech: Optional[SpeechInputController] = None
        if speech_service.supported:
            self.speech = SpeechInputController(speech_service.service, input_device)
            self.speech.on_listening_changed.subscribe(self._on_listening_changed)
            self.speech.on_final.subscribe(self._on_final_transcript)
            self.speech.on_error.subscribe(self._set_error)

        capture_service = capture_service or Capability.unsupported("No capture service configured")
        self.capture_unsupported_reason = capture_service.reason
        self.tab: Optional[TabAudioCaptureController] = None
        if capture_service.supported:
            self.tab = TabAudioCaptureController(
                capture_service.service, tab_transcriber, tab_chunk_seconds
            )
            self.tab.on_active_changed.subscribe(self._on_tab_active_changed)
            self.tab.on_final.subscribe(self._on_final_transcript)
            self.tab.on_error.subscribe(self._set_error)

    # Observable state

    @property
    def messages(self) -> List[Message]:
        return list(self.conversation)

    @property
    def metrics(self) -> Metrics:
        return self.recorder.metrics

    @property
    def interim_text(self) -> str:
        return self.speech.interim_text if self.speech else ""

    @property
    def is_listening(self) -> bool:
        return self.speech.listening if self.speech else False

    @property
    def is_capturing_tab_audio(self) -> bool:
        return self.tab.active if self.tab else False

    @property
    def is_streaming(self) -> bool:
        return self._turn_lock.locked()

    # Chat lifecycle

    def update_context(
        self,
        system_instruction: Optional[str] = None,
        personalization: Optional[str] = None,
        attachments: Optional[Iterable[Attachment]] = None,
    ) -> None:
        """Change what the next initialize() primes the chat with."""
        if system_instruction is not None:
            self.system_instruction = system_instruction
        if personalization is not None:
            self.personalization = personalization
        if attachments is not None:
            self.attachments = list(attachments)
        self._explicit_parts = None
        logger.info(
            "Session context updated",
            personalization_chars=len(self.personalization),
            attachments=len(self.attachments),
        )

    def _build_context(
        self,
        system_instruction: Optional[str],
        priming_parts: Optional[Sequence[PrimingPart]],
    ) -> SessionContext:
        instruction = system_instruction if system_instruction is not None else self.system_instruction
        if priming_parts is not None:
            return SessionContext(instruction, coerce_parts(priming_parts))
        if self._explicit_parts is not None:
            return SessionContext(instruction, self._explicit_parts)
        return build_session_context(instruction, self.personalization, self.attachments)

    def initialize(
        self,
        system_instruction: Optional[str] = None,
        priming_parts: Optional[Sequence[PrimingPart]] = None,
    ) -> bool:
        """
        Open a fresh chat session, replacing any previous one.

        Returns:
            True if a chat session is open afterwards
        """
        self._close_chat()

        context = self._build_context(system_instruction, priming_parts)
        try:
            handle = self.gateway.open(context.system_instruction, context.priming_parts)
        except ConfigurationError as e:
            logger.error("Failed to initialize chat session", error=str(e))
            self._set_error(e)
            return False
        except Exception as e:
            logger.error("Failed to initialize chat session", error=str(e))
            self._set_error(
                ConfigurationError(
                    "Failed to initialize chat. Is the GOOGLE_API_KEY environment "
                    "variable set correctly?"
                )
            )
            return False

        self.chat = ChatSessionState(handle=handle, context=context)
        priming_tokens = context.estimate_tokens()
        self.recorder.reset_session(priming_tokens)
        logger.info(
            "Chat session initialized",
            priming_parts=len(context.priming_parts),
            priming_tokens=priming_tokens,
        )
        return True

    def _close_chat(self) -> None:
        if self.chat.handle is not None:
            self.chat.handle.close()
        self.chat = ChatSessionState()

    def new_session(self) -> bool:
        """Stop listening, clear the conversation and open a fresh chat."""
        logger.info("User initiated new session, resetting state")
        if self.speech is not None and self.is_listening:
            self.speech.stop()

        self.conversation.clear()
        self.recorder.reset_session(0)
        self._clear_error()
        self._set_status("")
        return self.initialize()

    # Turns

    async def send_turn(self, text: str) -> Optional[Message]:
        """
        Send one user turn and stream the reply into an assistant message.

        Returns:
            The completed assistant message, or None if the turn was blank,
            rejected or failed
        """
        text = (text or "").strip()
        if not text:
            return None

        if self._turn_lock.locked():
            logger.warning("Turn rejected while another is streaming")
            self._set_error(ValidationError(TURN_IN_FLIGHT))
            return None

        async with self._turn_lock:
            if not self.chat.is_open:
                logger.warning("Chat session not initialized, starting a new one")
                if not self.initialize():
                    return None

            logger.info("Sending message", text=text)
            user_message = self.conversation.add_user_message(text)
            self.on_message.emit(user_message)
            placeholder = self.conversation.add_assistant_placeholder()
            self.on_message.emit(placeholder)
            self.recorder.begin_turn(text)

            try:
                await self._stream_reply(self.chat.handle, text, placeholder)
            except asyncio.CancelledError:
                logger.warning("Turn cancelled while streaming", text=text)
                placeholder.status = MessageStatus.FAILED
                self.conversation.remove(placeholder.id)
                self.recorder.abandon_turn()
                raise
            except VoiceAssistantError as e:
                self._fail_turn(placeholder, e)
                return None
            except Exception as e:
                logger.error("Unexpected streaming failure", error=str(e))
                self._fail_turn(placeholder, TransportError(TRANSPORT_FAILURE))
                return None

            placeholder.status = MessageStatus.COMPLETE
            self.recorder.complete_turn(placeholder.text)
            self.on_message.emit(placeholder)
            return placeholder

    async def _stream_reply(self, handle: ChatHandle, text: str, placeholder: Message) -> None:
        placeholder.status = MessageStatus.STREAMING
        first_chunk = True
        async for delta in handle.stream_turn(text):
            if first_chunk:
                self.recorder.record_first_chunk()
                first_chunk = False
            placeholder.text += delta
            self.on_message.emit(placeholder)

    def _fail_turn(self, placeholder: Message, error: VoiceAssistantError) -> None:
        logger.error("Error sending message", error=str(error), kind=error.kind)
        placeholder.status = MessageStatus.FAILED
        self.conversation.remove(placeholder.id)
        self.recorder.abandon_turn()
        if isinstance(error, ConfigurationError):
            # Turns stay blocked until a later initialize() succeeds.
            self._close_chat()
        self._set_error(error)

    async def submit_text(self, text: str) -> Optional[Message]:
        """Typed input path."""
        text = (text or "").strip()
        if not text:
            return None
        return await self.send_turn(text)

    def _on_final_transcript(self, text: str) -> None:
        task = asyncio.ensure_future(self.send_turn(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_for_pending_turns(self) -> None:
        """Wait for turns scheduled from transcripts."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Speech input

    def select_input_device(self, device_id: str) -> None:
        if self.speech is not None:
            self.speech.select_device(device_id)

    def start_listening(self) -> bool:
        """Start continuous speech input feeding turns."""
        if self.is_listening:
            return True

        if self.speech is None:
            reason = self.speech_unsupported_reason or "no speech service"
            logger.error("Speech recognition is not supported", reason=reason)
            self._set_error(
                ValidationError(f"Speech recognition is not supported on this system ({reason}).")
            )
            return False

        if self.is_capturing_tab_audio and self.speech.device_id == DEFAULT_DEVICE:
            logger.warning("Tab audio transcription attempted with default microphone")
            self._set_error(ValidationError(SELECT_VIRTUAL_DEVICE))
            return False

        self._clear_error()
        if not self.chat.is_open:
            logger.info("No active chat session, initializing one before listening")
            if not self.initialize():
                return False

        self.speech.start()
        return True

    def stop_listening(self) -> None:
        if self.speech is not None:
            self.speech.stop()

    def toggle_listening(self) -> bool:
        """Returns True when the call left the session trying to listen."""
        if self.is_listening:
            self.stop_listening()
            return False
        return self.start_listening()

    def _on_listening_changed(self, listening: bool) -> None:
        if listening:
            self._set_status(STATUS_LISTENING)
        elif self.speech is not None and not self.speech.manual_stop:
            self._set_status(STATUS_RESTARTING)
        else:
            self._set_status("")

    # Tab audio capture

    async def start_tab_capture(self) -> bool:
        """Capture tab audio. Returns True if capture is active afterwards."""
        if self.is_capturing_tab_audio:
            return True

        if self.tab is None:
            reason = self.capture_unsupported_reason or "no capture service"
            self._set_error(CaptureError(f"Tab audio capture is not supported on this system ({reason})."))
            return False

        self._clear_error()
        try:
            await self.tab.start()
        except CaptureError as e:
            self._set_error(e)
            return False

        self._set_status(STATUS_TAB_CAPTURED)
        return True

    def stop_tab_capture(self) -> None:
        if self.tab is not None:
            self.tab.stop()

    async def toggle_tab_capture(self) -> bool:
        if self.is_capturing_tab_audio:
            self.stop_tab_capture()
            return False
        return await self.start_tab_capture()

    def _on_tab_active_changed(self, active: bool) -> None:
        if not active:
            self._set_status("")

    # Error and status plumbing

    def _set_error(self, error: VoiceAssistantError) -> None:
        self.current_error = error
        self.on_error.emit(error)

    def _clear_error(self) -> None:
        if self.current_error is not None:
            self.current_error = None
            self.on_error.emit(None)

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        self.on_status.emit(status)

    async def close(self) -> None:
        """Release every resource the session holds."""
        self.stop_listening()
        self.stop_tab_capture()
        for task in list(self._tasks):
            task.cancel()
        self._close_chat()
        logger.info("Conversation session closed", messages=len(self.conversation))

    def get_status(self) -> dict:
        return {
            "chat_open": self.chat.is_open,
            "streaming": self.is_streaming,
            "messages": len(self.conversation),
            "status": self.status,
            "error": self.current_error.to_dict() if self.current_error else None,
            "listening": self.is_listening,
            "interim_text": self.interim_text,
            "tab_capture": self.is_capturing_tab_audio,
            "metrics": self.metrics.to_dict(),
            "gateway": self.gateway.get_status(),
            "speech": self.speech.get_status() if self.speech else None,
            "tab": self.tab.get_status() if self.tab else None,
        }


def create_session(config: SessionConfig, settings=None) -> ConversationSession:
    """Build a session from the provider registry, or from mocks in mock mode."""
    from ..config.settings import settings as default_settings
    settings = settings or default_settings

    if config.mock_mode:
        from mocks.providers import (
            MockCaptureService,
            MockGateway,
            MockRecognitionService,
            MockTranscriber,
        )

        gateway = MockGateway()
        speech_service = Capability.available(MockRecognitionService())
        capture_service = Capability.available(MockCaptureService())
        tab_transcriber = MockTranscriber() if config.transcribe_tab_audio else None
    else:
        from ..providers import registry

        gateway = registry.get_ai_gateway(config.ai_gateway)
        speech_service = registry.detect_speech_service(config.speech_service)
        capture_service = registry.detect_capture_service(config.capture_service)
        tab_transcriber = None
        if config.transcribe_tab_audio:
            tab_transcriber = registry.get_transcriber(config.transcriber)

    recorder = MetricsRecorder(
        input_price_per_million=settings.pricing.input_price_per_million,
        output_price_per_million=settings.pricing.output_price_per_million,
    )

    logger.info(
        "Creating conversation session",
        ai_gateway=config.ai_gateway,
        speech_supported=speech_service.supported,
        capture_supported=capture_service.supported,
        mock_mode=config.mock_mode,
    )

    return ConversationSession(
        gateway,
        speech_service=speech_service,
        capture_service=capture_service,
        tab_transcriber=tab_transcriber,
        recorder=recorder,
        system_instruction=config.system_instruction or settings.system_prompts.default,
        personalization=config.personalization or settings.system_prompts.personalization,
        attachments=config.attachments,
        input_device=config.input_device,
        tab_chunk_seconds=settings.audio.tab_chunk_seconds,
    )
