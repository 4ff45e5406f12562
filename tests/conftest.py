"""Pytest configuration and shared fixtures."""

import pytest

from chat.config import ServiceConfig, ServiceType
from chat.models import Message, Sender


@pytest.fixture
def mock_config():
    """Mock-backend configuration without artificial delay."""
    return ServiceConfig(service_type=ServiceType.MOCK, model_name="mock", mock_delay=0.0)


@pytest.fixture
def ollama_config():
    """Ollama configuration pointing at a fake host."""
    return ServiceConfig(
        service_type=ServiceType.OLLAMA, base_url="http://ollama.test", model_name="llama3"
    )


@pytest.fixture
def sample_messages():
    """Short conversation history."""
    return [
        Message(sender=Sender.USER, content="Hello"),
        Message(sender=Sender.ASSISTANT, content="Hi! How can I help?"),
        Message(sender=Sender.USER, content="Tell me about Python"),
    ]
