import pytest

from ami_client.memory import MemoryAmiServer, MemoryConnector


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def server() -> MemoryAmiServer:
    server = MemoryAmiServer(username="test", secret="test")
    server.listen()
    return server


@pytest.fixture
def connector(server: MemoryAmiServer) -> MemoryConnector:
    return MemoryConnector(server)
