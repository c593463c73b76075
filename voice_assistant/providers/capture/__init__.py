"""Tab audio capture services."""


def register_providers():
    """Register all capture services."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings

    def create_loopback(**kwargs):
        from .loopback import LoopbackCaptureService
        return LoopbackCaptureService(**kwargs)

    registry.register_capture_service(
        "loopback", create_loopback, lambda: settings.get_provider_config("loopback")
    )
