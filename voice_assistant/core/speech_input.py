"""
Speech input controller: continuous listening with auto-restart.

Transition table (``ListeningState``):

    state      event                     next       action
    ---------  ------------------------  ---------  ---------------------------------
    IDLE       start()                   STARTING   manual_stop=False, service.start()
    STARTING   service started           LISTENING  emit listening_changed(True)
    LISTENING  stop()                    STOPPING   manual_stop=True, service.stop()
    any        service ended, manual     IDLE       clear interim, listening_changed(False)
    any        service ended, unplanned  STARTING   clear interim, one service.start()
    any        error(code)               IDLE       manual_stop=True, clear interim, emit error

Recognizers that time out after a pause end without being asked to; the
unplanned-end row restarts them. Errors never restart.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import structlog

from ..errors import RecognitionError
from ..providers.speech.base import (
    DEFAULT_DEVICE,
    RecognitionEvent,
    SpeechRecognitionService,
)
from ..utils.events import EventChannel


logger = structlog.get_logger()


class ListeningState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    STOPPING = "stopping"


@dataclass
class SpeechState:
    listening: bool = False
    interim_text: str = ""
    manual_stop: bool = True


class SpeechInputController:
    """Drives a SpeechRecognitionService and publishes utterances."""

    def __init__(self, service: SpeechRecognitionService, device_id: str = DEFAULT_DEVICE):
        self.service = service
        self.device_id = device_id
        self.state = ListeningState.IDLE
        self.speech = SpeechState()
        self.restart_count = 0
        self.last_error: Optional[RecognitionError] = None

        self.on_listening_changed: EventChannel[bool] = EventChannel("listening_changed")
        self.on_interim: EventChannel[str] = EventChannel("interim")
        self.on_final: EventChannel[str] = EventChannel("final")
        self.on_error: EventChannel[RecognitionError] = EventChannel("recognition_error")

        self.service.set_listener(self)

    @property
    def listening(self) -> bool:
        return self.speech.listening

    @property
    def interim_text(self) -> str:
        return self.speech.interim_text

    @property
    def manual_stop(self) -> bool:
        return self.speech.manual_stop

    def select_device(self, device_id: str) -> None:
        """Choose the input device used on the next start."""
        self.device_id = device_id or DEFAULT_DEVICE
        logger.info("Speech input device selected", device=self.device_id)

    def start(self) -> None:
        """Request continuous listening."""
        if self.state in (ListeningState.STARTING, ListeningState.LISTENING):
            logger.debug("Speech input already active", state=self.state.value)
            return

        logger.info("User started listening", device=self.device_id)
        self.speech.manual_stop = False
        self.last_error = None
        self._request_start()

    def stop(self) -> None:
        """Request a stop. Completion is signalled by the service's end notification."""
        if self.state == ListeningState.IDLE:
            self.speech.manual_stop = True
            return

        logger.info("User manually stopped listening")
        self.speech.manual_stop = True
        self.state = ListeningState.STOPPING
        self.service.stop()

    def _request_start(self) -> None:
        self.state = ListeningState.STARTING
        try:
            self.service.set_device(self.device_id)
            self.service.start()
        except Exception as e:
            logger.error("Speech recognition failed to start", error=str(e))
            self._fail("start-failed", str(e))

    # Listener protocol: notifications from the recognition service.

    def handle_start(self) -> None:
        if self.speech.manual_stop:
            # A stop was requested before the service finished starting.
            logger.debug("Recognition started after stop request, stopping")
            self.state = ListeningState.STOPPING
            self.service.stop()
            return

        logger.info("Speech recognition service has started")
        self.state = ListeningState.LISTENING
        self._set_listening(True)

    def handle_result(self, event: RecognitionEvent) -> None:
        final_transcript = ""
        interim = ""
        for result in event.results[event.result_index:]:
            if result.is_final:
                final_transcript += result.transcript
            else:
                interim += result.transcript

        final_transcript = final_transcript.strip()
        if final_transcript:
            self._set_interim("")
            logger.info("Final transcript received", transcript=final_transcript)
            self.on_final.emit(final_transcript)
        else:
            self._set_interim(interim)

    def handle_error(self, code: str) -> None:
        self._fail(code)

    def _fail(self, code: str, detail: Optional[str] = None) -> None:
        error = RecognitionError(code, detail and f"Speech recognition error: {code} ({detail})")
        logger.error("Speech recognition error", code=code)
        self.last_error = error
        # Treat errors as a manual stop so the end notification does not restart.
        self.speech.manual_stop = True
        self.state = ListeningState.IDLE
        self._set_interim("")
        self._set_listening(False)
        self.on_error.emit(error)

    def handle_end(self) -> None:
        logger.info("Speech recognition service has ended")
        self._set_interim("")
        self._set_listening(False)

        if self.speech.manual_stop:
            self.state = ListeningState.IDLE
            return

        logger.warning("Speech recognition stopped unexpectedly, restarting")
        self.restart_count += 1
        self._request_start()

    def _set_listening(self, listening: bool) -> None:
        if self.speech.listening == listening:
            return
        self.speech.listening = listening
        self.on_listening_changed.emit(listening)

    def _set_interim(self, text: str) -> None:
        if self.speech.interim_text == text and text == "":
            return
        self.speech.interim_text = text
        self.on_interim.emit(text)

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "listening": self.speech.listening,
            "interim_text": self.speech.interim_text,
            "manual_stop": self.speech.manual_stop,
            "device": self.device_id,
            "restart_count": self.restart_count,
            "service": self.service.get_status(),
        }
