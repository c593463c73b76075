"""Error taxonomy for the voice assistant."""

from typing import Optional


class VoiceAssistantError(Exception):
    """Base class for every error the session surfaces to its caller."""

    kind = "error"
    recoverable = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class ConfigurationError(VoiceAssistantError):
    """Missing or invalid credential for the AI gateway."""

    kind = "configuration"
    recoverable = False


class TransportError(VoiceAssistantError):
    """A streaming call failed mid-flight."""

    kind = "transport"


class RecognitionError(VoiceAssistantError):
    """The speech recognizer reported a platform-level failure."""

    kind = "recognition"

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or f"Speech recognition error: {code}")
        self.code = code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["code"] = self.code
        return data


class CaptureError(VoiceAssistantError):
    """Tab audio capture could not be established."""

    kind = "capture"


class PermissionDeniedError(CaptureError):
    """The user denied or dismissed a capture permission prompt."""


class ValidationError(VoiceAssistantError):
    """Input rejected before it reached any external collaborator."""

    kind = "validation"
