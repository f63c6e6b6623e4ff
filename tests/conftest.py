import pytest_asyncio
from aiohttp.test_utils import TestServer

from helpers import FakeCSE


@pytest_asyncio.fixture
async def fake_cse():
    """A FakeCSE served on an ephemeral localhost port"""
    cse = FakeCSE()
    server = TestServer(cse.app, host="127.0.0.1")
    await server.start_server()
    cse.port = server.port
    yield cse
    await server.close()
