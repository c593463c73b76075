"""Provider interfaces and implementations for the AI gateway and platform services."""

from .registry import registry

# Defer provider registration to avoid circular imports
def _register_all_providers():
    """Register all provider types."""
    from . import ai, speech, capture, transcription
    ai.register_providers()
    speech.register_providers()
    capture.register_providers()
    transcription.register_providers()

# Register providers after module initialization
_register_all_providers()

__all__ = ['registry']
