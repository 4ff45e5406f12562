"""Service configuration."""

import os
from enum import Enum

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from connectors.errors import ConfigurationError


class ServiceType(str, Enum):
    """Supported chat backends."""

    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"
    MOCK = "mock"


class ServiceConfig(BaseModel):
    """Settings for one chat backend.

    Passed as-is into request construction; only presence and basic types are
    checked here.
    """

    service_type: ServiceType = ServiceType.OLLAMA
    base_url: str | None = None  # provider default when unset
    model_name: str = ""
    system_prompt: str | None = None
    temperature: float | None = 0.7
    max_tokens: int | None = None
    num_ctx: int | None = None  # Ollama context window
    keep_alive: str | None = None  # Ollama model keep-alive, e.g. "5m"
    timeout: float = Field(default=60.0, gt=0)
    deadline: float | None = Field(default=None, gt=0)  # overall cap per streamed reply
    mock_delay: float = Field(default=0.02, ge=0)


def build_config(**values) -> ServiceConfig:
    """Validate raw settings into a ``ServiceConfig``.

    Raises:
        ConfigurationError: If a value has the wrong type or is out of range
    """
    try:
        return ServiceConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid service configuration: {e}") from e


def _optional(name: str) -> str | None:
    value = os.getenv(name)
    return value if value not in (None, "") else None


def load_config() -> ServiceConfig:
    """Build configuration from ``IRIS_*`` environment variables (and ``.env``)."""
    load_dotenv()

    values = {
        "service_type": os.getenv("IRIS_SERVICE_TYPE", ServiceType.OLLAMA.value),
        "base_url": _optional("IRIS_BASE_URL"),
        "model_name": os.getenv("IRIS_MODEL_NAME", ""),
        "system_prompt": _optional("IRIS_SYSTEM_PROMPT"),
        "temperature": _optional("IRIS_TEMPERATURE") or 0.7,
        "max_tokens": _optional("IRIS_MAX_TOKENS"),
        "num_ctx": _optional("IRIS_NUM_CTX"),
        "keep_alive": _optional("IRIS_KEEP_ALIVE"),
        "timeout": _optional("IRIS_TIMEOUT") or 60.0,
        "deadline": _optional("IRIS_DEADLINE"),
    }
    return build_config(**values)
