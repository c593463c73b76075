"""AI gateways."""


def register_providers():
    """Register all AI gateways."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings

    def create_gemini(**kwargs):
        from .gemini import GeminiGateway
        return GeminiGateway(**kwargs)

    registry.register_ai_gateway(
        "gemini", create_gemini, lambda: settings.get_provider_config("gemini")
    )
