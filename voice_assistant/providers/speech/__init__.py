"""Speech recognition services."""


def register_providers():
    """Register all speech recognition services."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings

    def create_vad_dictation(**kwargs):
        from .vad_dictation import VadDictationService
        if "transcriber" not in kwargs:
            kwargs["transcriber"] = registry.get_transcriber(settings.providers.transcriber)
        return VadDictationService(**kwargs)

    registry.register_speech_service(
        "vad_dictation",
        create_vad_dictation,
        lambda: settings.get_provider_config("vad_dictation"),
    )
