"""Session orchestration: speech input, tab audio capture and the conversation session."""

from .conversation_session import ConversationSession, SessionConfig, create_session
from .speech_input import ListeningState, SpeechInputController
from .tab_audio import TabAudioCaptureController

__all__ = [
    "ConversationSession",
    "SessionConfig",
    "create_session",
    "ListeningState",
    "SpeechInputController",
    "TabAudioCaptureController",
]
