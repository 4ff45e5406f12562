"""Backend selection by service type."""

from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import ValidationError

from chat.config import ServiceConfig, ServiceType

from .client import ChatClient, HttpChatClient
from .errors import ConfigurationError
from .lmstudio import LMStudioAdapter
from .mock import MockChatClient
from .ollama import OllamaAdapter

logger = structlog.get_logger(__name__)

ClientBuilder = Callable[[ServiceConfig], ChatClient]


def _ollama(config: ServiceConfig) -> ChatClient:
    adapter = OllamaAdapter(num_ctx=config.num_ctx, keep_alive=config.keep_alive)
    return HttpChatClient(adapter, config)


def _lmstudio(config: ServiceConfig) -> ChatClient:
    return HttpChatClient(LMStudioAdapter(), config)


def _mock(config: ServiceConfig) -> ChatClient:
    return MockChatClient(config)


# Built-in backends; extra ones are registered on a ClientFactory instance
BUILTIN_BUILDERS: Mapping[str, ClientBuilder] = MappingProxyType(
    {
        ServiceType.OLLAMA.value: _ollama,
        ServiceType.LMSTUDIO.value: _lmstudio,
        ServiceType.MOCK.value: _mock,
    }
)

# Backends that cannot pick a sensible model on their own
BUILTIN_REQUIRES_MODEL = frozenset({ServiceType.OLLAMA.value, ServiceType.LMSTUDIO.value})


class ClientFactory:
    """Maps service type tags to client builders.

    Each factory starts from the built-in backends. Registering a builder only
    affects that factory.
    """

    def __init__(self):
        self._builders: dict[str, ClientBuilder] = dict(BUILTIN_BUILDERS)
        self._requires_model: set[str] = set(BUILTIN_REQUIRES_MODEL)

    def register(self, service_type: str, builder: ClientBuilder, requires_model: bool = True):
        """Add or replace the builder for a service type."""
        self._builders[service_type] = builder
        if requires_model:
            self._requires_model.add(service_type)
        else:
            self._requires_model.discard(service_type)

    def supported_service_types(self) -> list[str]:
        return sorted(self._builders)

    def create(
        self,
        service_type: ServiceType | str,
        config: ServiceConfig | Mapping[str, Any] | None = None,
    ) -> ChatClient:
        """Create a chat client for ``service_type``.

        Args:
            service_type: Backend tag ("ollama", "lmstudio", "mock", or a registered one)
            config: Service settings, as a ``ServiceConfig`` or a plain mapping

        Returns:
            A ready-to-use chat client

        Raises:
            ConfigurationError: Unknown service type or missing/invalid settings
        """
        tag = service_type.value if isinstance(service_type, ServiceType) else str(service_type)
        builder = self._builders.get(tag)
        if builder is None:
            raise ConfigurationError(
                f"Unsupported service type: {tag!r} "
                f"(expected one of {self.supported_service_types()})"
            )

        if config is None:
            if tag != ServiceType.MOCK.value:
                raise ConfigurationError(f"Service type {tag!r} requires a configuration")
            config = ServiceConfig(service_type=ServiceType.MOCK)

        if not isinstance(config, ServiceConfig):
            values = {
                key: value
                for key, value in config.items()
                if value is not None and key != "service_type"
            }
            if tag in {member.value for member in ServiceType}:
                values["service_type"] = tag
            try:
                config = ServiceConfig(**values)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid service configuration: {e}") from e

        if tag in self._requires_model and not config.model_name.strip():
            raise ConfigurationError(f"Service type {tag!r} requires a model name")

        logger.info("chat_client_created", service_type=tag, model=config.model_name)
        return builder(config)


def supported_service_types() -> list[str]:
    return sorted(BUILTIN_BUILDERS)


def create_client(
    service_type: ServiceType | str,
    config: ServiceConfig | Mapping[str, Any] | None = None,
) -> ChatClient:
    """Create a client for one of the built-in backends. See ``ClientFactory.create``."""
    return ClientFactory().create(service_type, config)
