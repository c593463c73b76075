"""Audio chunk transcribers."""


def register_providers():
    """Register all transcribers."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings

    def create_gemini(**kwargs):
        from .gemini import GeminiTranscriber
        return GeminiTranscriber(**kwargs)

    registry.register_transcriber(
        "gemini", create_gemini, lambda: settings.get_provider_config("gemini_transcriber")
    )
