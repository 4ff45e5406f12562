"""Backend command handlers."""

from connectors.client import ChatClient, HttpChatClient
from connectors.errors import TransportError


async def check_connection(client: ChatClient):
    """Report whether the configured backend is reachable."""
    if not isinstance(client, HttpChatClient):
        print("Error: This backend does not support connection checks.\n")
        return

    if await client.test_connection():
        print(f"\n✓ Connected to {client.adapter.name} at {client.base_url}\n")
    else:
        print(f"\n⚠ Could not reach {client.adapter.name} at {client.base_url}\n")


async def list_models(client: ChatClient):
    """List the models the backend offers."""
    if not isinstance(client, HttpChatClient):
        print("Error: This backend does not support listing models.\n")
        return

    try:
        models = await client.list_models()
    except TransportError as e:
        print(f"Error: {e}\n")
        return

    if not models:
        print("\nNo models available.\n")
        return

    print("\n=== Available Models ===")
    for name in models:
        marker = "→" if name == client.config.model_name else " "
        print(f"{marker} {name}")
    print()
