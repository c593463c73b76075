"""Base interface for continuous speech recognition services."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Protocol


DEFAULT_DEVICE = "default"


@dataclass
class RecognitionAlternative:
    transcript: str
    confidence: Optional[float] = None


@dataclass
class RecognitionResult:
    """One entry of a recognition result list."""

    alternatives: List[RecognitionAlternative]
    is_final: bool = False

    @property
    def transcript(self) -> str:
        return self.alternatives[0].transcript if self.alternatives else ""


@dataclass
class RecognitionEvent:
    """
    A result notification.

    ``results`` is the append-only result list of the current utterance
    group; entries before ``result_index`` were already delivered.
    """

    result_index: int
    results: List[RecognitionResult] = field(default_factory=list)


class RecognitionListener(Protocol):
    """Receiver of recognizer notifications."""

    def handle_start(self) -> None: ...

    def handle_result(self, event: RecognitionEvent) -> None: ...

    def handle_error(self, code: str) -> None: ...

    def handle_end(self) -> None: ...


class SpeechRecognitionService(ABC):
    """
    Continuous dictation service.

    ``start()`` and ``stop()`` are requests; the listener is told when the
    service actually started or ended.
    """

    def __init__(self):
        self.listener: Optional[RecognitionListener] = None
        self.device_id = DEFAULT_DEVICE

    def set_listener(self, listener: RecognitionListener) -> None:
        self.listener = listener

    def set_device(self, device_id: str) -> None:
        self.device_id = device_id

    @abstractmethod
    def start(self) -> None:
        """Request the service to start listening."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Request the service to stop listening."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the service."""
        pass
