"""
LocalServer pytest Fixtures

Load with ``pytest_plugins = ["localserver.testing"]`` in a conftest.py.

Example:
    def test_profile(local_server):
        BasicResponseProvider.json(r'https://.*/me', {'name': 'Jhon'}).add_to_local_server()
        assert httpx.get('https://api.example.com/me').json() == {'name': 'Jhon'}
"""

import pytest

from .server import LocalServer, get_local_server


@pytest.fixture
def local_server():
    """Started default LocalServer, emptied and stopped after the test."""
    server = get_local_server()
    server.reset()
    server.start()
    try:
        yield server
    finally:
        server.stop()
        server.reset()


@pytest.fixture
def isolated_local_server():
    """Fresh, unstarted LocalServer not shared with the rest of the process."""
    server = LocalServer()
    try:
        yield server
    finally:
        server.stop()
