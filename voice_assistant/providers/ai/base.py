"""Base interface for AI chat gateways."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Sequence

from ...state.context import PrimingPart


class ChatHandle(ABC):
    """One open chat session with the model."""

    @abstractmethod
    def stream_turn(self, text: str) -> AsyncIterator[str]:
        """
        Send a user turn and stream the response.

        Args:
            text: The user's message

        Yields:
            Text deltas in the order the model produced them

        Raises:
            TransportError: If the call fails before or during streaming
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the session."""
        pass

    def get_status(self) -> dict:
        return {}


class AIGateway(ABC):
    """Abstract base class for chat model gateways."""

    @abstractmethod
    def open(
        self, system_instruction: str, priming_parts: Sequence[PrimingPart]
    ) -> ChatHandle:
        """
        Open a chat session.

        When priming parts are given, the session history starts with a
        synthetic user turn carrying them and a model acknowledgement.

        Raises:
            ConfigurationError: If credentials are missing or invalid
        """
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the gateway."""
        pass
