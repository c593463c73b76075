"""Provider registry for dynamic provider loading."""

from typing import Dict, Callable, Any
import structlog

from .ai.base import AIGateway
from .capability import Capability
from .capture.base import ScreenAudioCaptureService
from .speech.base import SpeechRecognitionService
from .transcription.base import Transcriber


logger = structlog.get_logger()


# Factories import their implementation lazily so that a host without an
# audio stack can still load the registry and report the service unsupported.
Factory = Callable[..., Any]


class ProviderRegistry:
    """Registry for managing provider implementations."""

    def __init__(self):
        self._ai_gateways: Dict[str, Factory] = {}
        self._speech_services: Dict[str, Factory] = {}
        self._capture_services: Dict[str, Factory] = {}
        self._transcribers: Dict[str, Factory] = {}
        self._provider_configs: Dict[str, Callable[[], Dict[str, Any]]] = {}

    def _register(
        self,
        kind: str,
        table: Dict[str, Factory],
        name: str,
        factory: Factory,
        config_getter: Callable[[], Dict[str, Any]] = None,
    ) -> None:
        table[name] = factory
        if config_getter:
            self._provider_configs[f"{kind}:{name}"] = config_getter
        logger.debug(f"Registered {kind} provider", name=name)

    def _create(self, kind: str, table: Dict[str, Factory], name: str, **kwargs) -> Any:
        if name not in table:
            raise ValueError(f"Unknown {kind} provider: {name}")

        config_key = f"{kind}:{name}"
        if config_key in self._provider_configs:
            config = self._provider_configs[config_key]()
            config.update(kwargs)
            kwargs = config

        return table[name](**kwargs)

    def register_ai_gateway(
        self, name: str, factory: Factory, config_getter: Callable[[], Dict[str, Any]] = None
    ) -> None:
        """Register an AI gateway."""
        self._register("ai", self._ai_gateways, name, factory, config_getter)

    def register_speech_service(
        self, name: str, factory: Factory, config_getter: Callable[[], Dict[str, Any]] = None
    ) -> None:
        """Register a speech recognition service."""
        self._register("speech", self._speech_services, name, factory, config_getter)

    def register_capture_service(
        self, name: str, factory: Factory, config_getter: Callable[[], Dict[str, Any]] = None
    ) -> None:
        """Register a tab audio capture service."""
        self._register("capture", self._capture_services, name, factory, config_getter)

    def register_transcriber(
        self, name: str, factory: Factory, config_getter: Callable[[], Dict[str, Any]] = None
    ) -> None:
        """Register an audio chunk transcriber."""
        self._register("transcription", self._transcribers, name, factory, config_getter)

    def get_ai_gateway(self, name: str, **kwargs) -> AIGateway:
        """Get an AI gateway instance."""
        return self._create("ai", self._ai_gateways, name, **kwargs)

    def get_transcriber(self, name: str, **kwargs) -> Transcriber:
        """Get a transcriber instance."""
        return self._create("transcription", self._transcribers, name, **kwargs)

    def detect_speech_service(self, name: str, **kwargs) -> Capability[SpeechRecognitionService]:
        """Look up a speech recognition service, reporting whether this host supports it."""
        return self._detect("speech", self._speech_services, name, **kwargs)

    def detect_capture_service(self, name: str, **kwargs) -> Capability[ScreenAudioCaptureService]:
        """Look up a tab capture service, reporting whether this host supports it."""
        return self._detect("capture", self._capture_services, name, **kwargs)

    def _detect(self, kind: str, table: Dict[str, Factory], name: str, **kwargs) -> Capability:
        if name not in table:
            return Capability.unsupported(f"Unknown {kind} provider: {name}")
        try:
            service = self._create(kind, table, name, **kwargs)
        except (ImportError, OSError) as e:
            logger.warning(f"{kind} provider unsupported on this host", name=name, error=str(e))
            return Capability.unsupported(str(e))
        return Capability.available(service)

    def list_ai_gateways(self) -> list[str]:
        """List available AI gateways."""
        return list(self._ai_gateways.keys())

    def list_speech_services(self) -> list[str]:
        """List available speech recognition services."""
        return list(self._speech_services.keys())

    def list_capture_services(self) -> list[str]:
        """List available capture services."""
        return list(self._capture_services.keys())

    def list_transcribers(self) -> list[str]:
        """List available transcribers."""
        return list(self._transcribers.keys())

    def clear(self) -> None:
        """Clear all registered providers."""
        self._ai_gateways.clear()
        self._speech_services.clear()
        self._capture_services.clear()
        self._transcribers.clear()
        self._provider_configs.clear()


# Global registry instance
registry = ProviderRegistry()
